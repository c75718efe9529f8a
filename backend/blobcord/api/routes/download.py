import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import PlainTextResponse

from blobcord.api.dependencies import get_reassembler, get_request_context, get_storage_service
from blobcord.services.reassembler import Reassembler
from blobcord.services.storage_service import StorageService
from blobcord.types import RequestContext
from blobcord.utils.mime_types import guess_mime_type

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/download", tags=["download"])

CACHE_CONTROL = "public, max-age=31536000, immutable"


def content_disposition(disposition: str, filename: str) -> str:
    """Header value for inline/attachment, with an RFC 5987 form for non-ASCII names"""
    try:
        filename.encode("latin-1")
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
        return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return f'{disposition}; filename="{filename}"'


@router.get("/{filename}")
async def download_file(
    filename: str,
    download: bool = Query(False, description="Serve as attachment instead of inline"),
    storage: StorageService = Depends(get_storage_service),
    reassembler: Reassembler = Depends(get_reassembler),
    ctx: RequestContext = Depends(get_request_context),
):
    """Reassemble and decrypt a stored file"""
    db_file = storage.get(filename)
    if not db_file:
        return PlainTextResponse("File not found", status_code=status.HTTP_404_NOT_FOUND)
    storage.release(db_file)

    try:
        body = await reassembler.reassemble(db_file, ctx)
    except Exception as exc:
        logger.error(f"[{ctx.request_id}] Download Error: {exc}")
        return PlainTextResponse("Failed", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    headers = {
        "Content-Disposition": content_disposition("attachment" if download else "inline", db_file.name),
        "Cache-Control": CACHE_CONTROL,
        "Content-Length": str(len(body)),
    }
    return Response(content=bytes(body), media_type=guess_mime_type(db_file.name), headers=headers)
