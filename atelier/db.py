"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, selectinload, sessionmaker

from atelier.errors import StoreError

ROLE_CLIENT = "cliente"
ROLE_ADMIN = "admin"

STATS_ROW_ID = 1
STAT_COUNTERS = ("visitas", "clique_imagem", "clique_orcamento")


class DbClient(Protocol):
    """Interface for database access."""

    def get_profile(self, user_id: str) -> Optional["ProfileRecord"]:
        ...

    def create_profile(
        self,
        user_id: str,
        role: str = ROLE_CLIENT,
        cpf: str | None = None,
        telefone: str | None = None,
    ) -> "ProfileRecord":
        ...

    def list_clients(self) -> list[dict]:
        ...

    def create_product(self, title: str, description: str) -> "ProductRecord":
        ...

    def add_product_images(
        self, product_id: str, images: list[tuple[str, int]]
    ) -> None:
        ...

    def list_products(self) -> list["ProductRecord"]:
        ...

    def list_product_image_urls(self, product_id: str) -> list[str]:
        ...

    def delete_product(self, product_id: str) -> None:
        ...

    def create_photo(
        self, url: str, description: str | None = None
    ) -> "PhotoRecord":
        ...

    def get_photo(self, photo_id: str) -> Optional["PhotoRecord"]:
        ...

    def list_photos(self) -> list["PhotoRecord"]:
        ...

    def update_photo_description(self, photo_id: str, description: str) -> None:
        ...

    def delete_photo(self, photo_id: str) -> None:
        ...

    def increment_stat(self, counter: str) -> None:
        ...

    def get_stats(self) -> Optional[dict]:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class ProfileRecord:
    id: str
    role: str = ROLE_CLIENT
    cpf: Optional[str] = None
    telefone: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "cpf": self.cpf,
            "telefone": self.telefone,
        }


@dataclass
class ProductImageRecord:
    id: str
    product_id: str
    url: str
    order_index: int

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "url": self.url,
            "order_index": self.order_index,
        }


@dataclass
class ProductRecord:
    id: str
    title: str
    description: str
    created_at: datetime = field(default_factory=_now)
    images: list[ProductImageRecord] = field(default_factory=list)

    def as_dict(self) -> dict:
        images = sorted(self.images, key=lambda image: image.order_index)
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "product_images": [image.as_dict() for image in images],
        }


@dataclass
class PhotoRecord:
    id: str
    url: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=_now)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }


def _check_counter(counter: str) -> None:
    if counter not in STAT_COUNTERS:
        raise StoreError(f"Unknown stats counter: {counter}")


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.profiles: Dict[str, ProfileRecord] = {}
        self.products: Dict[str, ProductRecord] = {}
        self.photos: Dict[str, PhotoRecord] = {}
        self.stats: dict = {"id": STATS_ROW_ID, **{name: 0 for name in STAT_COUNTERS}}

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        return self.profiles.get(user_id)

    def create_profile(
        self,
        user_id: str,
        role: str = ROLE_CLIENT,
        cpf: str | None = None,
        telefone: str | None = None,
    ) -> ProfileRecord:
        if user_id in self.profiles:
            raise StoreError(
                'duplicate key value violates unique constraint "profiles_pkey"'
            )
        record = ProfileRecord(id=user_id, role=role, cpf=cpf, telefone=telefone)
        self.profiles[user_id] = record
        return record

    def list_clients(self) -> list[dict]:
        return [
            {"cpf": p.cpf, "telefone": p.telefone, "role": p.role}
            for p in self.profiles.values()
            if p.role != ROLE_ADMIN
        ]

    def create_product(self, title: str, description: str) -> ProductRecord:
        record = ProductRecord(id=_new_id(), title=title, description=description)
        self.products[record.id] = record
        return record

    def add_product_images(
        self, product_id: str, images: list[tuple[str, int]]
    ) -> None:
        product = self.products.get(product_id)
        if product is None:
            raise StoreError(
                'insert or update on table "product_images" violates foreign key constraint'
            )
        for url, order_index in images:
            product.images.append(
                ProductImageRecord(
                    id=_new_id(),
                    product_id=product_id,
                    url=url,
                    order_index=order_index,
                )
            )

    def list_products(self) -> list[ProductRecord]:
        return sorted(self.products.values(), key=lambda p: p.created_at)

    def list_product_image_urls(self, product_id: str) -> list[str]:
        product = self.products.get(product_id)
        if product is None:
            return []
        return [image.url for image in product.images]

    def delete_product(self, product_id: str) -> None:
        # Images go with the product, like ON DELETE CASCADE.
        self.products.pop(product_id, None)

    def create_photo(self, url: str, description: str | None = None) -> PhotoRecord:
        record = PhotoRecord(id=_new_id(), url=url, description=description)
        self.photos[record.id] = record
        return record

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        return self.photos.get(photo_id)

    def list_photos(self) -> list[PhotoRecord]:
        return sorted(self.photos.values(), key=lambda p: p.created_at)

    def update_photo_description(self, photo_id: str, description: str) -> None:
        photo = self.photos.get(photo_id)
        if photo:
            photo.description = description

    def delete_photo(self, photo_id: str) -> None:
        self.photos.pop(photo_id, None)

    def increment_stat(self, counter: str) -> None:
        _check_counter(counter)
        self.stats[counter] += 1

    def get_stats(self) -> Optional[dict]:
        return dict(self.stats)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.profiles.clear()
        self.products.clear()
        self.photos.clear()
        for name in STAT_COUNTERS:
            self.stats[name] = 0


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str, create_tables: bool = True):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        if create_tables:
            Base.metadata.create_all(self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        with self._session() as session:
            row = session.get(ProfileRow, user_id)
            return _to_profile(row) if row else None

    def create_profile(
        self,
        user_id: str,
        role: str = ROLE_CLIENT,
        cpf: str | None = None,
        telefone: str | None = None,
    ) -> ProfileRecord:
        with self._session() as session:
            row = ProfileRow(id=user_id, role=role, cpf=cpf, telefone=telefone)
            session.add(row)
            session.commit()
            return _to_profile(row)

    def list_clients(self) -> list[dict]:
        with self._session() as session:
            stmt = select(ProfileRow.cpf, ProfileRow.telefone, ProfileRow.role).where(
                ProfileRow.role != ROLE_ADMIN
            )
            return [
                {"cpf": cpf, "telefone": telefone, "role": role}
                for cpf, telefone, role in session.execute(stmt)
            ]

    def create_product(self, title: str, description: str) -> ProductRecord:
        with self._session() as session:
            row = ProductRow(
                id=_new_id(), title=title, description=description, created_at=_now()
            )
            session.add(row)
            session.commit()
            return ProductRecord(
                id=row.id,
                title=row.title,
                description=row.description,
                created_at=row.created_at,
            )

    def add_product_images(
        self, product_id: str, images: list[tuple[str, int]]
    ) -> None:
        with self._session() as session:
            session.add_all(
                [
                    ProductImageRow(
                        id=_new_id(),
                        product_id=product_id,
                        url=url,
                        order_index=order_index,
                    )
                    for url, order_index in images
                ]
            )
            session.commit()

    def list_products(self) -> list[ProductRecord]:
        with self._session() as session:
            stmt = (
                select(ProductRow)
                .options(selectinload(ProductRow.images))
                .order_by(ProductRow.created_at.asc())
            )
            return [_to_product(row) for row in session.execute(stmt).scalars()]

    def list_product_image_urls(self, product_id: str) -> list[str]:
        with self._session() as session:
            stmt = select(ProductImageRow.url).where(
                ProductImageRow.product_id == product_id
            )
            return list(session.execute(stmt).scalars())

    def delete_product(self, product_id: str) -> None:
        with self._session() as session:
            row = session.get(ProductRow, product_id)
            if row is None:
                return
            session.delete(row)
            session.commit()

    def create_photo(self, url: str, description: str | None = None) -> PhotoRecord:
        with self._session() as session:
            row = PhotoRow(
                id=_new_id(), url=url, description=description, created_at=_now()
            )
            session.add(row)
            session.commit()
            return _to_photo(row)

    def get_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        with self._session() as session:
            row = session.get(PhotoRow, photo_id)
            return _to_photo(row) if row else None

    def list_photos(self) -> list[PhotoRecord]:
        with self._session() as session:
            stmt = select(PhotoRow).order_by(PhotoRow.created_at.asc())
            return [_to_photo(row) for row in session.execute(stmt).scalars()]

    def update_photo_description(self, photo_id: str, description: str) -> None:
        with self._session() as session:
            session.execute(
                update(PhotoRow)
                .where(PhotoRow.id == photo_id)
                .values(description=description)
            )
            session.commit()

    def delete_photo(self, photo_id: str) -> None:
        with self._session() as session:
            row = session.get(PhotoRow, photo_id)
            if row is None:
                return
            session.delete(row)
            session.commit()

    def increment_stat(self, counter: str) -> None:
        _check_counter(counter)
        column = getattr(StatsRow, counter)
        with self._session() as session:
            result = session.execute(
                update(StatsRow)
                .where(StatsRow.id == STATS_ROW_ID)
                .values({column: column + 1})
            )
            if result.rowcount == 0:
                session.add(StatsRow(id=STATS_ROW_ID, **{counter: 1}))
            session.commit()

    def get_stats(self) -> Optional[dict]:
        with self._session() as session:
            row = session.get(StatsRow, STATS_ROW_ID)
            if row is None:
                return None
            return {"id": row.id, **{name: getattr(row, name) for name in STAT_COUNTERS}}


def _to_profile(row: "ProfileRow") -> ProfileRecord:
    return ProfileRecord(id=row.id, role=row.role, cpf=row.cpf, telefone=row.telefone)


def _to_product(row: "ProductRow") -> ProductRecord:
    return ProductRecord(
        id=row.id,
        title=row.title,
        description=row.description,
        created_at=row.created_at,
        images=[
            ProductImageRecord(
                id=image.id,
                product_id=image.product_id,
                url=image.url,
                order_index=image.order_index,
            )
            for image in row.images
        ],
    )


def _to_photo(row: "PhotoRow") -> PhotoRecord:
    return PhotoRecord(
        id=row.id, url=row.url, description=row.description, created_at=row.created_at
    )


Base = declarative_base()


class ProfileRow(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    role = Column(String, nullable=False, default=ROLE_CLIENT, index=True)
    cpf = Column(String, nullable=True)
    telefone = Column(String, nullable=True)


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    images = relationship(
        "ProductImageRow",
        order_by="ProductImageRow.order_index",
        cascade="all, delete-orphan",
    )


class ProductImageRow(Base):
    __tablename__ = "product_images"

    id = Column(String, primary_key=True)
    product_id = Column(
        String,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url = Column(String, nullable=False)
    order_index = Column(Integer, nullable=False, default=0)


class PhotoRow(Base):
    __tablename__ = "photos"

    id = Column(String, primary_key=True)
    url = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class StatsRow(Base):
    __tablename__ = "stats"

    id = Column(Integer, primary_key=True)
    visitas = Column(Integer, nullable=False, default=0)
    clique_imagem = Column(Integer, nullable=False, default=0)
    clique_orcamento = Column(Integer, nullable=False, default=0)
