"""Invoice download API"""

from typing import Any

from fastapi import APIRouter
from fastapi.responses import FileResponse

from clinicpos.core.errors import NotFoundError, ValidationError
from clinicpos.services.file_storage import InvalidFilenameError, get_storage

router = APIRouter()


@router.get("/{filename}")
async def download_invoice(filename: str) -> Any:
    """Serve a stored invoice PDF inline"""
    try:
        path, exists = get_storage().open_file(filename)
    except InvalidFilenameError:
        raise ValidationError("Invalid filename")
    if not exists:
        raise NotFoundError("Invoice")

    return FileResponse(
        path=str(path),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "Access-Control-Expose-Headers": "Content-Disposition"
        }
    )
