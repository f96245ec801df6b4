"""
SQLAlchemy database models for the TukuPoa marketplace.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Numeric, Boolean, ForeignKey, DateTime, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func

Base = declarative_base()

USER_ROLES = ("user", "admin")
PAYMENT_STATUSES = ("pending", "completed", "failed", "cancelled")


class User(Base):
    """Marketplace account; sellers and buyers share this table."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(100), unique=True, nullable=False, index=True)
    phone = Column(String(20), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)  # bcrypt hash (includes salt)
    first_name = Column(String(100))
    last_name = Column(String(100))
    location = Column(String(100))
    avatar_url = Column(String(255))
    is_verified = Column(Boolean, default=False, nullable=False)
    role = Column(String(20), default="user", nullable=False)  # user | admin
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    products = relationship("Product", back_populates="owner", passive_deletes="all")
    payments = relationship("Payment", back_populates="buyer", passive_deletes="all")
    favorites = relationship("Favorite", back_populates="user", passive_deletes="all")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}')>"


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    icon = Column(String(50))
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    products = relationship("Product", back_populates="category", passive_deletes="all")

    def __repr__(self):
        return f"<Category(id={self.id}, name='{self.name}')>"


class Product(Base):
    """A secondhand item listed for sale."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2))
    condition = Column(String(20), nullable=False)
    condition_rating = Column(String(10))
    functionality_rating = Column(String(10))
    location = Column(String(100), nullable=False)
    latitude = Column(Numeric(10, 8))
    longitude = Column(Numeric(11, 8))
    views = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)  # false once sold
    is_negotiable = Column(Boolean, default=False, nullable=False)
    is_hot_sale = Column(Boolean, default=False, nullable=False)
    discount_percentage = Column(Integer)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_products_user_id", "user_id"),
        Index("ix_products_category_id", "category_id"),
    )

    # Relationships
    owner = relationship("User", back_populates="products")
    category = relationship("Category", back_populates="products")
    images = relationship(
        "ProductImage",
        back_populates="product",
        order_by="ProductImage.id",
        passive_deletes="all",
    )

    def __repr__(self):
        return f"<Product(id={self.id}, title='{self.title}')>"


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    image_url = Column(String(255), nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    product = relationship("Product", back_populates="images")

    def __repr__(self):
        return f"<ProductImage(id={self.id}, product_id={self.product_id}, is_primary={self.is_primary})>"


class Payment(Base):
    """Mobile-money payment record for a single product purchase."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)  # buyer
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=False)
    phone_number = Column(String(20))
    reference = Column(String(100), unique=True, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending|completed|failed|cancelled
    transaction_id = Column(String(100))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    buyer = relationship("User", back_populates="payments")
    product = relationship("Product")

    def __repr__(self):
        return f"<Payment(id={self.id}, reference='{self.reference}', status='{self.status}')>"


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    receiver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=True)
    content = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_messages_receiver_sender", "receiver_id", "sender_id"),
    )

    def __repr__(self):
        return f"<Message(id={self.id}, sender_id={self.sender_id}, receiver_id={self.receiver_id})>"


class Favorite(Base):
    """Favorite linking a user to a product they bookmarked."""
    __tablename__ = "favorites"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Unique constraint: one favorite per user-product combination
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_favorite_user_product"),
        Index("ix_favorites_user_id", "user_id"),
    )

    user = relationship("User", back_populates="favorites")
    product = relationship("Product")

    def __repr__(self):
        return f"<Favorite(id={self.id}, user_id={self.user_id}, product_id={self.product_id})>"
