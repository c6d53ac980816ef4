"""
File Upload Utility - validate uploads and extract resume text.

Supported formats:
- Resumes: PDF (.pdf), text extracted with PyPDF2. Max 10MB
- Images (profile pictures, company logos): JPEG, PNG, WebP. Max 5MB
"""

import io
import logging
from typing import Tuple

from fastapi import UploadFile
from PyPDF2 import PdfReader
from PyPDF2.errors import PyPdfError

from internmatch.core.errors import ValidationError

logger = logging.getLogger(__name__)

MAX_RESUME_SIZE_MB = 10
MAX_IMAGE_SIZE_MB = 5
MAX_RESUME_SIZE_BYTES = MAX_RESUME_SIZE_MB * 1024 * 1024
MAX_IMAGE_SIZE_BYTES = MAX_IMAGE_SIZE_MB * 1024 * 1024

RESUME_EXTENSIONS = {".pdf"}
IMAGE_TYPES = {
    "image/jpeg": {".jpg", ".jpeg"},
    "image/png": {".png"},
    "image/webp": {".webp"},
}


def get_file_extension(filename: str) -> str:
    """Get lowercase file extension."""
    if "." not in filename:
        return ""
    return "." + filename.rsplit(".", 1)[1].lower()


async def read_resume_upload(file: UploadFile) -> Tuple[bytes, str]:
    """
    Validate a resume upload and return (content, filename).
    Raises ValidationError on a missing name, wrong type or oversize file.
    """
    if not file or not file.filename:
        raise ValidationError("No file provided")
    ext = get_file_extension(file.filename)
    if ext not in RESUME_EXTENSIONS or (file.content_type and file.content_type != "application/pdf"):
        raise ValidationError("Only PDF files are allowed")

    content = await file.read()
    if not content:
        raise ValidationError("File is empty")
    if len(content) > MAX_RESUME_SIZE_BYTES:
        raise ValidationError(f"File too large. Maximum size: {MAX_RESUME_SIZE_MB}MB")
    if not content.startswith(b"%PDF"):
        raise ValidationError("File is not a valid PDF")
    return content, file.filename


async def read_image_upload(file: UploadFile) -> Tuple[bytes, str]:
    """Validate an image upload (JPEG/PNG/WebP, 5MB) and return (content, filename)."""
    if not file or not file.filename:
        raise ValidationError("No file provided")
    allowed_exts = IMAGE_TYPES.get(file.content_type or "")
    if allowed_exts is None or get_file_extension(file.filename) not in allowed_exts:
        raise ValidationError("Invalid file type. Only JPEG, PNG, and WebP images are allowed")

    content = await file.read()
    if not content:
        raise ValidationError("File is empty")
    if len(content) > MAX_IMAGE_SIZE_BYTES:
        raise ValidationError(f"File too large. Maximum size: {MAX_IMAGE_SIZE_MB}MB")
    return content, file.filename


def extract_from_pdf(content: bytes) -> str:
    """Extract text from PDF bytes. Scanned PDFs yield an empty string."""
    try:
        reader = PdfReader(io.BytesIO(content))
        text_parts = []
        for page in reader.pages:
            page_text = page.extract_text()
            if page_text:
                text_parts.append(page_text)
        return "\n".join(text_parts)
    except (PyPdfError, ValueError, KeyError, TypeError) as e:
        raise ValidationError(f"Error reading PDF: {e}") from e
