import logging
import uuid

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..config import (
    PRESIGNED_URL_EXPIRATION,
    STORAGE_ACCESS_KEY_ID,
    STORAGE_BUCKET_NAME,
    STORAGE_ENDPOINT_URL,
    STORAGE_REGION,
    STORAGE_SECRET_ACCESS_KEY,
)
from ..database import get_db
from ..domain.proposals.repository import ProposalRepository
from ..models import User
from ..rate_limiter import create_rate_limiter
from ..shared.validators import UPLOAD_FILE_TYPES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Upload"])

__all__ = ["router", "get_storage_client", "generate_upload_url", "generate_presigned_url"]

# Folders objects are written under, one per upload kind ("proposals", "contracts")
OBJECT_FOLDERS = {f"{file_type}s" for file_type in UPLOAD_FILE_TYPES}

rate_limit_upload = create_rate_limiter(limit=60, window_seconds=3600, key_prefix="upload_url")


class UploadTargetRequest(BaseModel):
    fileType: str = "proposal"


class UploadTargetResponse(BaseModel):
    uploadURL: str


def get_storage_client():
    """Create and return an S3-compatible storage client."""
    return boto3.client(
        "s3",
        endpoint_url=STORAGE_ENDPOINT_URL,
        aws_access_key_id=STORAGE_ACCESS_KEY_ID,
        aws_secret_access_key=STORAGE_SECRET_ACCESS_KEY,
        region_name=STORAGE_REGION,
        # Path-style keeps the object key as the last segments of the URL path
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


def generate_upload_url(file_type: str, expiration: int = PRESIGNED_URL_EXPIRATION) -> str:
    """Generate a presigned PUT URL for a new object under ``<fileType>s/``."""
    if file_type not in UPLOAD_FILE_TYPES:
        raise ValueError(f"Unsupported file type: {file_type}")

    key = f"{file_type}s/{uuid.uuid4()}"
    try:
        url = get_storage_client().generate_presigned_url(
            "put_object",
            Params={"Bucket": STORAGE_BUCKET_NAME, "Key": key},
            ExpiresIn=expiration,
        )
        logger.info(f"✅ Generated upload URL for key: {key}")
        return url
    except Exception as e:
        logger.error(f"❌ Failed to generate upload URL for key {key}: {e}")
        raise


def generate_presigned_url(key: str, expiration: int = PRESIGNED_URL_EXPIRATION) -> str:
    """Generate a presigned URL for reading a private object."""
    params = {"Bucket": STORAGE_BUCKET_NAME, "Key": key, "ResponseContentDisposition": "inline"}
    try:
        url = get_storage_client().generate_presigned_url(
            "get_object",
            Params=params,
            ExpiresIn=expiration,
        )
        logger.info(f"✅ Generated presigned URL for key: {key}")
        return url
    except Exception as e:
        logger.error(f"❌ Failed to generate presigned URL for key {key}: {e}")
        raise


def object_exists(key: str) -> bool:
    try:
        get_storage_client().head_object(Bucket=STORAGE_BUCKET_NAME, Key=key)
        return True
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code")
        if code in ("404", "NoSuchKey", "NotFound"):
            return False
        logger.error(f"❌ Failed to look up object {key}: {e}")
        raise


@router.post("/api/objects/upload", response_model=UploadTargetResponse)
async def request_upload_target(
    data: UploadTargetRequest,
    current_user: User = Depends(get_current_user),
    _: None = Depends(rate_limit_upload),
):
    """Issue a presigned URL the browser PUTs a file to directly."""
    logger.info(f"📤 Upload target requested by user {current_user.id} for {data.fileType}")

    if data.fileType not in UPLOAD_FILE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Expected one of: {', '.join(sorted(UPLOAD_FILE_TYPES))}",
        )

    try:
        upload_url = generate_upload_url(data.fileType)
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to create upload URL") from e

    return UploadTargetResponse(uploadURL=upload_url)


@router.get("/objects/{folder}/{object_id}")
async def serve_object(
    folder: str,
    object_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Redirect to a short-lived URL for an object on one of the caller's proposals."""
    if folder not in OBJECT_FOLDERS or ".." in object_id:
        raise HTTPException(status_code=404, detail="Object not found")

    # Strangers get the same 404 as a missing object
    if not ProposalRepository.user_can_read_object(db, current_user.id, f"/objects/{folder}/{object_id}"):
        logger.warning(f"🔒 User {current_user.id} denied object {folder}/{object_id}")
        raise HTTPException(status_code=404, detail="Object not found")

    key = f"{folder}/{object_id}"
    try:
        if not object_exists(key):
            raise HTTPException(status_code=404, detail="Object not found")
        url = generate_presigned_url(key)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail="Failed to retrieve object") from e

    return RedirectResponse(url=url)
