"""
Build-time preparation of GeoNames per-country dumps.

Downloads `<base_url>/<CC>.zip`, extracts `<CC>.txt` into the data directory
and leaves the query path fully offline. Runs outside request handling:
every request is timeout-bound, transport errors and 429/5xx responses are
retried with exponential backoff, and a threading.Event cancels a download
between chunks or during a backoff sleep.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
import zipfile
from pathlib import Path
from typing import Optional

import httpx

from local_geocoder.config import get_settings
from local_geocoder.errors import DataUnavailable, DownloadCancelled, GeocoderError, MalformedSource
from local_geocoder.gazetteer import normalize_country_code

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def _is_fresh(path: Path, max_age_days: int) -> bool:
    if not path.is_file():
        return False
    age_s = time.time() - path.stat().st_mtime
    return age_s < max_age_days * 86400


def _check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise DownloadCancelled("Download cancelled")


def _download_archive(
    client: httpx.Client,
    url: str,
    target: Path,
    cancel: Optional[threading.Event] = None,
) -> None:
    """Stream url into target with retry/backoff. Writes via a .part file."""
    settings = get_settings().download
    partial = target.with_name(target.name + ".part")

    for attempt in range(1, settings.max_retries + 1):
        _check_cancelled(cancel)
        try:
            with client.stream("GET", url, timeout=settings.request_timeout) as resp:
                resp.raise_for_status()
                with partial.open("wb") as f:
                    for chunk in resp.iter_bytes(settings.chunk_size):
                        _check_cancelled(cancel)
                        f.write(chunk)
            partial.replace(target)
            return

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 404:
                raise DataUnavailable(f"No GeoNames archive at {url}") from e
            if status not in RETRYABLE_STATUS_CODES or attempt == settings.max_retries:
                raise GeocoderError(f"Download of {url} failed with HTTP {status}") from e
            logger.warning("HTTP %d downloading %s (attempt %d/%d)",
                           status, url, attempt, settings.max_retries)

        except httpx.RequestError as e:
            if attempt == settings.max_retries:
                raise GeocoderError(f"Download of {url} failed: {e}") from e
            logger.warning("Request error downloading %s (attempt %d/%d): %s",
                           url, attempt, settings.max_retries, e)

        finally:
            if partial.exists():
                partial.unlink()

        wait = settings.backoff_base ** attempt
        logger.info("Retrying %s in %.1fs", url, wait)
        if cancel is None:
            time.sleep(wait)
        elif cancel.wait(wait):
            raise DownloadCancelled("Download cancelled")

    raise GeocoderError(f"Download of {url} failed")


def _extract_country_file(archive: Path, country_code: str, target: Path) -> None:
    """
    Extract `<CC>.txt` from the archive. Falls back to a case-insensitive match,
    then to the first .txt member (readme.txt excluded).
    """
    wanted = f"{country_code}.txt"
    try:
        with zipfile.ZipFile(archive) as zf:
            names = [n for n in zf.namelist() if not n.endswith("/")]
            member = next((n for n in names if Path(n).name == wanted), None)
            if member is None:
                member = next((n for n in names if Path(n).name.lower() == wanted.lower()), None)
            if member is None:
                txt_files = [n for n in names
                             if n.lower().endswith(".txt") and Path(n).name.lower() != "readme.txt"]
                if not txt_files:
                    raise DataUnavailable(f"No .txt files found in {archive.name}", (country_code,))
                member = txt_files[0]
                logger.warning("Using alternative file %s from %s", member, archive.name)

            with zf.open(member) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)
    except zipfile.BadZipFile as e:
        raise MalformedSource(f"Corrupt archive {archive.name}: {e}") from e


def fetch_country(
    country_code: str,
    data_dir: Optional[str | Path] = None,
    client: Optional[httpx.Client] = None,
    cancel: Optional[threading.Event] = None,
    force: bool = False,
) -> Path:
    """
    Make sure `<data_dir>/<CC>.txt` exists and is up to date.
    Returns the path of the extracted text file.
    """
    code = normalize_country_code(country_code)
    if code is None:
        raise DataUnavailable(f"Not a country code: {country_code!r}", (str(country_code),))

    settings = get_settings()
    base = Path(data_dir if data_dir is not None else settings.gazetteer.data_dir)
    base.mkdir(parents=True, exist_ok=True)
    archive = base / f"{code}.zip"
    txt_file = base / f"{code}.txt"

    own_client = client is None
    client = client or httpx.Client(follow_redirects=True)
    try:
        if force or not _is_fresh(archive, settings.download.max_age_days):
            url = f"{settings.download.base_url.rstrip('/')}/{code}.zip"
            logger.info("Downloading %s", url)
            _download_archive(client, url, archive, cancel)
        else:
            logger.info("%s already exists and is recent", archive.name)

        if force or not txt_file.is_file() or archive.stat().st_mtime > txt_file.stat().st_mtime:
            try:
                _extract_country_file(archive, code, txt_file)
            except MalformedSource:
                # A corrupt cached archive gets one fresh download
                logger.warning("Extraction failed for %s, re-downloading", archive.name)
                url = f"{settings.download.base_url.rstrip('/')}/{code}.zip"
                _download_archive(client, url, archive, cancel)
                _extract_country_file(archive, code, txt_file)
            logger.info("Extracted %s", txt_file.name)
        else:
            logger.info("%s already extracted and up-to-date", txt_file.name)
    finally:
        if own_client:
            client.close()

    return txt_file


def prepare_countries(
    country_codes: list[str],
    data_dir: Optional[str | Path] = None,
    client: Optional[httpx.Client] = None,
    cancel: Optional[threading.Event] = None,
    force: bool = False,
) -> dict:
    """
    Fetch every requested country, continuing past failures.
    Returns stats dict with successful/failed counts and the failed codes.
    """
    stats = {"successful": 0, "failed": 0, "failed_countries": []}

    for code in country_codes:
        try:
            fetch_country(code, data_dir=data_dir, client=client, cancel=cancel, force=force)
            stats["successful"] += 1
        except DownloadCancelled:
            raise
        except GeocoderError as e:
            logger.error("Failed to process %s: %s", code, e)
            stats["failed"] += 1
            stats["failed_countries"].append(code)

    logger.info("GeoNames data preparation completed: %s", stats)
    return stats
