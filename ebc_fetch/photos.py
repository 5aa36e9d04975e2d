"""Photo evidence: timestamps, file naming, conversion and two-phase storage.

Each photo is written in one database transaction. The row is inserted
first so its id can name the file; bytes are staged under a ``.part``
name and only renamed into place once the transaction has committed.
If anything fails before the commit the staged files are removed and the
transaction rolls back. If a rename fails after the commit the row is
deleted again, so an image row never points at a missing file.
"""

from __future__ import annotations

import asyncio
import mimetypes
import os
import posixpath
import re
import shutil
import subprocess
from datetime import datetime, tzinfo
from pathlib import Path

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .config import PhotoConfig
from .models import PhotoResult
from .parser import ParsedAttachment, ParsedEmail, parse_header_date
from .store import ScoreMasterStore

logger = structlog.get_logger()

CONVERTER_TIMEOUT_SECONDS = 60

_NAME_TIME_RE = re.compile(r"(\d{4})(\d\d)(\d\d)_(\d\d)(\d\d)(\d\d)")
_MODIFIED_RE = re.compile(r'modification-date="([^"]+)"')
_CREATED_RE = re.compile(r'creation-date="([^"]+)"')
_QUOTED_NAME_RE = re.compile(r'"(.+)"')


def time_from_photo(filename: str, content_disposition: str, tz: tzinfo) -> datetime | None:
    """When was the photo taken?

    Phone cameras name files ``YYYYMMDD_HHMMSS``; that is read as rally
    time. Otherwise fall back to the modification (then creation) date
    some mail clients put in the Content-Disposition.
    """
    match = _NAME_TIME_RE.search(filename)
    if match:
        try:
            return datetime(*(int(g) for g in match.groups()), tzinfo=tz)
        except ValueError:
            return None

    match = _MODIFIED_RE.search(content_disposition) or _CREATED_RE.search(content_disposition)
    if match:
        return parse_header_date(match.group(1))
    return None


def name_from_content_type(content_type: str) -> str:
    """The quoted ``name="..."`` of an inline part, or the header itself."""
    match = _QUOTED_NAME_RE.search(content_type)
    if match:
        return match.group(1)
    return content_type


def image_filename(photo_id: int, entrant_id: int, bonus_id: str, ext: str) -> str:
    return f"img-{entrant_id}-{bonus_id}-{photo_id}{ext}"


def _extension(filename: str, content_type: str) -> str:
    ext = os.path.splitext(filename.replace('"', ""))[1]
    if ext:
        return ext
    mime = content_type.split(";", 1)[0].strip().lower()
    return mimetypes.guess_extension(mime) or ""


def _staging_path(final: Path) -> Path:
    # keep the real suffix last so the converter can still sniff the format
    return final.with_name(f"{final.stem}.part{final.suffix}")


def _discard(paths: list[Path]) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.warning("photo_cleanup_failed", path=str(path), exc_info=True)


async def convert_image(converter: str, source: Path, target: Path) -> None:
    """Run ``converter source target``; raises on a non-zero exit."""
    await asyncio.to_thread(
        subprocess.run,
        [converter, str(source), str(target)],
        capture_output=True,
        timeout=CONVERTER_TIMEOUT_SECONDS,
        check=True,
    )


def check_converter(config: PhotoConfig) -> bool:
    """Warn at startup when conversion is on but the converter is missing."""
    if not config.convert_heic:
        return True
    if shutil.which(config.converter) is None:
        logger.warning("image_converter_missing", converter=config.converter)
        return False
    return True


class AttachmentProcessor:
    """Extracts every attached and embedded photo from a claim email."""

    def __init__(
        self,
        store: ScoreMasterStore,
        config: PhotoConfig,
        tz: tzinfo,
        *,
        test_mode: bool = False,
    ) -> None:
        self._store = store
        self._config = config
        self._tz = tz
        self._test_mode = test_mode
        self._image_dir = Path(config.root) / config.folder

    async def process(
        self,
        parsed: ParsedEmail,
        entrant_id: int,
        bonus_id: str,
        email_id: int,
    ) -> PhotoResult:
        """Count, timestamp and (outside test mode) store every photo.

        Stops at the first photo that cannot be stored; ``ok`` is then
        False and ``count`` includes the failed photo. ``rejected`` marks a
        failure that retrying cannot fix (undecodable part, converter exit
        status).
        """
        result = PhotoResult()
        parts = [(a, a.filename) for a in parsed.attachments]
        parts += [(e, e.filename or name_from_content_type(e.content_type)) for e in parsed.embedded]

        for part, name in parts:
            result.count += 1
            taken = time_from_photo(name, part.content_disposition, self._tz)
            if taken is not None and (result.photo_time is None or taken > result.photo_time):
                result.photo_time = taken

            if part.payload is None:
                logger.warning("photo_unreadable", uid=email_id, filename=name)
                result.ok = False
                result.rejected = True
                break
            if self._test_mode:
                continue

            try:
                photo_id, files = await self.store_photo(part, name, entrant_id, bonus_id, email_id)
            except subprocess.CalledProcessError as exc:
                logger.warning(
                    "photo_conversion_rejected",
                    uid=email_id,
                    filename=name,
                    returncode=exc.returncode,
                )
                result.ok = False
                result.rejected = True
                break
            except (OSError, SQLAlchemyError, subprocess.SubprocessError):
                logger.exception("photo_store_failed", uid=email_id, filename=name)
                result.ok = False
                break
            result.photo_ids.append(photo_id)
            result.files.extend(files)
            logger.debug("photo_stored", uid=email_id, photo_id=photo_id, size=len(part.payload))

        return result

    async def discard(self, result: PhotoResult, email_id: int) -> None:
        """Remove the rows and files of photos stored for a message that
        did not become a claim."""
        for photo_id in result.photo_ids:
            try:
                await self._store.delete_photo(photo_id)
            except SQLAlchemyError:
                logger.exception("photo_discard_failed", uid=email_id, photo_id=photo_id)
        _discard(result.files)
        if result.photo_ids:
            logger.info("photos_discarded", uid=email_id, photo_ids=result.photo_ids)
        result.photo_ids = []
        result.files = []

    async def store_photo(
        self,
        part: ParsedAttachment,
        name: str,
        entrant_id: int,
        bonus_id: str,
        email_id: int,
    ) -> tuple[int, list[Path]]:
        """Persist one photo with the staged-commit protocol.

        Returns the photo id and every file now in the image folder for it.
        """
        assert part.payload is not None
        ext = _extension(name, part.content_type)
        staged: list[tuple[Path, Path]] = []

        try:
            async with self._store.photo_transaction() as tx:
                photo_id = await tx.insert_photo(entrant_id, bonus_id, email_id)

                final = self._image_dir / image_filename(photo_id, entrant_id, bonus_id, ext)
                staging = _staging_path(final)
                await asyncio.to_thread(staging.write_bytes, part.payload)
                staged.append((staging, final))
                stored = final

                if self._config.convert_heic and ext.lower() != self._config.standard_extension:
                    converted = self._image_dir / image_filename(
                        photo_id, entrant_id, bonus_id, self._config.standard_extension
                    )
                    converted_staging = _staging_path(converted)
                    staged.append((converted_staging, converted))
                    await convert_image(self._config.converter, staging, converted_staging)
                    stored = converted

                await tx.set_image_path(photo_id, posixpath.join(self._config.folder, stored.name))
        except BaseException:
            _discard([s for s, _ in staged])
            raise

        try:
            for staging, final in staged:
                os.replace(staging, final)
        except OSError:
            _discard([p for pair in staged for p in pair])
            await self._store.delete_photo(photo_id)
            raise

        return photo_id, [final for _, final in staged]
