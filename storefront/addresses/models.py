from sqlalchemy import Integer, String
from sqlalchemy.orm import mapped_column

from ..db import Base


class AddressModel(Base):
    __tablename__ = "addresses"

    id = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id = mapped_column(Integer, nullable=False, index=True)
    street = mapped_column(String(255), nullable=True)
    city = mapped_column(String(100), nullable=True)
    state = mapped_column(String(100), nullable=True)
    postal_code = mapped_column(String(20), nullable=True)
    country = mapped_column(String(100), nullable=True)
