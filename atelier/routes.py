"""
HTTP routes for the Atelier backend API.
"""

from __future__ import annotations

import logging
import os
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from atelier.auth import AuthenticatedUser, require_admin, require_user
from atelier.config import Settings
from atelier.db import ROLE_CLIENT, DbClient
from atelier.dependencies import (
    get_app_settings,
    get_db_client,
    get_identity_client,
    get_storage_client,
)
from atelier.errors import (
    INTERNAL_ERROR_MESSAGE,
    ApiError,
    ExternalStoreFailure,
    IdentityError,
    NotFound,
    StorageError,
    StoreError,
    Unauthenticated,
    ValidationFailed,
)
from atelier.identity import IdentityClient
from atelier.schemas import (
    ClientProfile,
    LoginRequest,
    LoginResponse,
    MeResponse,
    OkResponse,
    Photo,
    PhotoUpdateRequest,
    PhotoUploadResponse,
    Product,
    RecoverRequest,
    RegisterRequest,
)
from atelier.storage import StorageClient, key_from_url

logger = logging.getLogger(__name__)

router = APIRouter()

STATS_ROUTES = {
    "/stats/visit": "visitas",
    "/stats/click-image": "clique_imagem",
    "/stats/click-orcamento": "clique_orcamento",
}


def _extension(filename: str | None) -> str:
    return os.path.splitext(filename or "")[1].lower()


def product_image_key(product_id: str, filename: str | None) -> str:
    return f"{product_id}/{uuid4()}{_extension(filename)}"


def photo_key(filename: str | None) -> str:
    return f"{uuid4()}{_extension(filename)}"


async def _read_upload(upload: UploadFile, limit: int) -> bytes:
    # One byte past the limit marks an oversized part.
    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise ValidationFailed(
            f"Arquivo excede o limite de {limit // (1024 * 1024)} MB"
        )
    return data


# ==========================
# HEALTH
# ==========================


@router.get("/", response_class=PlainTextResponse)
@router.get("/health", response_class=PlainTextResponse)
def health() -> str:
    return "Server is healthy"


# ==========================
# AUTH
# ==========================


@router.post("/auth/register", response_model=OkResponse, status_code=201)
def register(
    payload: Optional[RegisterRequest] = None,
    identity: IdentityClient = Depends(get_identity_client),
    db: DbClient = Depends(get_db_client),
):
    payload = payload or RegisterRequest()
    if not (payload.email and payload.password and payload.cpf and payload.telefone):
        raise ValidationFailed("Dados obrigatórios faltando")

    try:
        user = identity.create_user(payload.email, payload.password)
    except IdentityError as exc:
        raise ValidationFailed(exc.message)

    try:
        db.create_profile(
            user.id, role=ROLE_CLIENT, cpf=payload.cpf, telefone=payload.telefone
        )
    except StoreError as exc:
        # The identity user stays behind without a profile; /me heals it later.
        logger.error("Profile insert failed for new user %s: %s", user.id, exc.message)
        raise ValidationFailed(exc.message)

    logger.info("Registered user %s", user.id)
    return OkResponse()


@router.post("/auth/login", response_model=LoginResponse)
def login(
    payload: Optional[LoginRequest] = None,
    identity: IdentityClient = Depends(get_identity_client),
):
    payload = payload or LoginRequest()
    try:
        session = identity.sign_in_with_password(
            payload.email or "", payload.password or ""
        )
    except IdentityError as exc:
        logger.info("Login rejected: %s", exc.message)
        raise Unauthenticated("Login inválido")
    return LoginResponse(access_token=session.access_token, user=session.user.as_dict())


@router.post("/auth/recover", response_model=OkResponse)
def recover(
    payload: Optional[RecoverRequest] = None,
    identity: IdentityClient = Depends(get_identity_client),
    settings: Settings = Depends(get_app_settings),
):
    payload = payload or RecoverRequest()
    try:
        identity.send_recovery_email(payload.email or "", settings.recover_redirect_url)
    except IdentityError as exc:
        raise ValidationFailed(exc.message)
    return OkResponse()


# ==========================
# ME
# ==========================


@router.get("/me", response_model=MeResponse)
def me(
    user: AuthenticatedUser = Depends(require_user),
    db: DbClient = Depends(get_db_client),
):
    try:
        profile = db.get_profile(user.id)
        if profile is None:
            profile = db.create_profile(user.id, role=ROLE_CLIENT)
            logger.info("Created missing profile for user %s", user.id)
    except StoreError as exc:
        logger.error("Profile bootstrap failed for %s: %s", user.id, exc.message)
        raise ExternalStoreFailure("Erro ao buscar perfil")
    return MeResponse(id=user.id, role=profile.role)


# ==========================
# PRODUCTS
# ==========================


@router.get("/products", response_model=list[Product])
def list_products(db: DbClient = Depends(get_db_client)):
    try:
        products = db.list_products()
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)
    return [product.as_dict() for product in products]


async def _create_product_with_images(
    title: str,
    description: str,
    uploads: list[tuple[UploadFile, bytes]],
    db: DbClient,
    storage: StorageClient,
    bucket: str,
) -> None:
    try:
        product = await run_in_threadpool(db.create_product, title, description)
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)

    urls: list[str] = []
    for upload, data in uploads:
        key = product_image_key(product.id, upload.filename)
        try:
            await run_in_threadpool(
                storage.upload_bytes, bucket, key, data, upload.content_type
            )
        except StorageError as exc:
            logger.error(
                "Upload %s failed for product %s after %d image(s): %s",
                key,
                product.id,
                len(urls),
                exc.message,
            )
            raise ExternalStoreFailure(exc.message)
        urls.append(storage.public_url(bucket, key))

    try:
        await run_in_threadpool(
            db.add_product_images,
            product.id,
            [(url, index) for index, url in enumerate(urls)],
        )
    except StoreError as exc:
        logger.error(
            "Image rows insert failed for product %s; %d blob(s) left unreferenced: %s",
            product.id,
            len(urls),
            exc.message,
        )
        raise ExternalStoreFailure(exc.message)

    logger.info("Created product %s with %d image(s)", product.id, len(urls))


@router.post("/products", response_model=OkResponse, status_code=201)
async def create_product(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    files: Optional[list[UploadFile]] = File(None),
    _admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_app_settings),
):
    if not (title and title.strip()) or not (description and description.strip()):
        raise ValidationFailed("Título e descrição são obrigatórios")
    files = files or []
    if not files:
        raise ValidationFailed("Envie ao menos uma imagem")
    if len(files) > settings.max_product_files:
        raise ValidationFailed(
            f"Envie no máximo {settings.max_product_files} imagens"
        )

    try:
        uploads = [
            (upload, await _read_upload(upload, settings.max_upload_bytes))
            for upload in files
        ]
        await _create_product_with_images(
            title, description, uploads, db, storage, settings.products_bucket
        )
    except ApiError:
        raise
    except Exception:
        logger.exception("Unexpected error while creating product")
        raise ExternalStoreFailure(INTERNAL_ERROR_MESSAGE)
    return OkResponse()


@router.delete("/products/{product_id}", response_model=OkResponse)
def delete_product(
    product_id: str,
    _admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_app_settings),
):
    try:
        urls = db.list_product_image_urls(product_id)
    except StoreError as exc:
        logger.warning("Could not list images of product %s: %s", product_id, exc.message)
        urls = []

    for url in urls:
        key = key_from_url(url, segments=2)
        try:
            storage.delete_object(settings.products_bucket, key)
        except StorageError as exc:
            logger.warning("Blob %s not deleted: %s", key, exc.message)

    try:
        db.delete_product(product_id)
    except StoreError as exc:
        logger.error("Product %s row not deleted: %s", product_id, exc.message)
        return OkResponse()

    logger.info("Deleted product %s (%d image(s))", product_id, len(urls))
    return OkResponse()


# ==========================
# PHOTOS
# ==========================


@router.get("/photos", response_model=list[Photo])
def list_photos(db: DbClient = Depends(get_db_client)):
    try:
        photos = db.list_photos()
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)
    return [photo.as_dict() for photo in photos]


@router.post("/photos", response_model=PhotoUploadResponse, status_code=201)
async def upload_photo(
    file: Optional[UploadFile] = File(None),
    _admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_app_settings),
):
    if file is None:
        raise ValidationFailed("Arquivo não enviado")

    data = await _read_upload(file, settings.max_upload_bytes)
    key = photo_key(file.filename)
    try:
        await run_in_threadpool(
            storage.upload_bytes, settings.photos_bucket, key, data, file.content_type
        )
        url = storage.public_url(settings.photos_bucket, key)
        await run_in_threadpool(db.create_photo, url)
    except (StorageError, StoreError) as exc:
        logger.error("Photo upload %s failed: %s", key, exc.message)
        raise ExternalStoreFailure(exc.message)

    return PhotoUploadResponse(url=url)


@router.put("/photos/{photo_id}", response_model=OkResponse)
def update_photo(
    photo_id: str,
    payload: Optional[PhotoUpdateRequest] = None,
    _admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    description = payload.description if payload else None
    if not isinstance(description, str):
        raise ValidationFailed("Descrição inválida")
    try:
        db.update_photo_description(photo_id, description)
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)
    return OkResponse()


@router.delete("/photos/{photo_id}", response_model=OkResponse)
def delete_photo(
    photo_id: str,
    _admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_app_settings),
):
    try:
        photo = db.get_photo(photo_id)
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)
    if photo is None:
        raise NotFound("Foto não encontrada")

    key = key_from_url(photo.url)
    try:
        storage.delete_object(settings.photos_bucket, key)
    except StorageError as exc:
        logger.warning("Blob %s not deleted: %s", key, exc.message)

    try:
        db.delete_photo(photo_id)
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)
    return OkResponse()


# ==========================
# STATS
# ==========================


def _stats_endpoint(counter: str):
    def bump(db: DbClient = Depends(get_db_client)):
        try:
            db.increment_stat(counter)
        except Exception as exc:
            logger.warning("Counter %s not incremented: %s", counter, exc)
        return OkResponse()

    return bump


for _path, _counter in STATS_ROUTES.items():
    router.add_api_route(
        _path,
        _stats_endpoint(_counter),
        methods=["POST"],
        response_model=OkResponse,
        name=f"increment_{_counter}",
    )


# ==========================
# ADMIN
# ==========================


@router.get("/admin/stats")
def admin_stats(
    _admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        return db.get_stats()
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)


@router.get("/admin/clients", response_model=list[ClientProfile])
def admin_clients(
    _admin: AuthenticatedUser = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    try:
        return db.list_clients()
    except StoreError as exc:
        raise ExternalStoreFailure(exc.message)
