from sqlalchemy import Column, ForeignKey, Integer, Numeric, String, UniqueConstraint
from models.database import Base


class DealProduct(Base):
    """
    Товарная позиция сделки.
    Одна строка на пару (deal_id, product_id): повторная синхронизация заменяет значения.
    """
    __tablename__ = "deals_products"
    __table_args__ = (
        UniqueConstraint("deal_id", "product_id", name="uq_deals_products_deal_product"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    deal_id = Column(Integer, ForeignKey("deals.id"), index=True)
    product_id = Column(Integer)
    product_name = Column(String)
    price = Column(Numeric(14, 2))  # PRICE_BRUTTO
    discount = Column(Numeric(14, 2))  # DISCOUNT_SUM
