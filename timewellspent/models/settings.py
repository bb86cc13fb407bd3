from sqlalchemy import Column, String, Text

from timewellspent.storage.database import Base


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)  # JSON
