"""
Pydantic schemas for the Atelier backend.

Request fields are optional at the schema level; presence is checked by the
handlers so missing fields produce the service's own 400 messages.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    cpf: Optional[str] = None
    telefone: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RecoverRequest(BaseModel):
    email: Optional[str] = None


class PhotoUpdateRequest(BaseModel):
    # Any JSON value is accepted here; non-strings are rejected with a 400.
    description: Any = None


class OkResponse(BaseModel):
    ok: Literal[True] = True


class LoginResponse(BaseModel):
    access_token: str
    user: dict


class PhotoUploadResponse(BaseModel):
    url: str


class MeResponse(BaseModel):
    id: str
    role: str


class ProductImage(BaseModel):
    id: str
    product_id: str
    url: str
    order_index: int


class Product(BaseModel):
    id: str
    title: str
    description: str
    created_at: str
    product_images: list[ProductImage]


class Photo(BaseModel):
    id: str
    url: str
    description: Optional[str] = None
    created_at: str


class ClientProfile(BaseModel):
    cpf: Optional[str] = None
    telefone: Optional[str] = None
    role: str
