from sqlalchemy import Column, Integer, String, Date
from models.database import Base

class Deal(Base):
    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, autoincrement=False)  # ID из Bitrix24
    title = Column(String)
    category_id = Column(Integer)  # Воронка
    price_type = Column(Integer)  # Тип цены (пользовательское поле)
    date_create = Column(Date)
