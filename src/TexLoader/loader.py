"""Public entry points for loading encoded images into textures.

Every function here wraps an ``ImageImportSession`` and turns failures into a
``False``/``None`` result. When ``settings.log_exception`` is set the failure is
logged with its traceback, and callers that pass a ``diagnostics`` list get a
``LoadDiagnostic`` appended to it.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config import LoaderSettings
from .core.decoders import BaseDecoder
from .core.errors import InvalidArgumentError
from .core.jobs import JobScheduler, run_in_thread
from .core.texture import TextureImage
from .importer import ImageImportSession

logger = logging.getLogger("texture_loader")


@dataclass
class LoadDiagnostic:
    """Record of a failed load."""

    error_type: str
    message: str
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "LoadDiagnostic":
        return cls(type(exc).__name__, str(exc), exc)


def _resolve_settings(settings: Optional[LoaderSettings],
                      mark_non_readable: Optional[bool]) -> LoaderSettings:
    settings = settings or LoaderSettings.default()
    if mark_non_readable is not None:
        settings = dataclasses.replace(settings, mark_non_readable=mark_non_readable)
    return settings


def _check_data(data) -> None:
    if data is None or len(data) == 0:
        raise InvalidArgumentError("Input data is null or empty.")


async def _open_session_async(data, settings, decoder, scheduler) -> ImageImportSession:
    # A cancelled caller never reaches its `with` block; close the session
    # the worker thread builds anyway.
    return await run_in_thread(
        ImageImportSession, data, settings, decoder, scheduler,
        on_abandon=ImageImportSession.close,
    )


def _report_failure(exc: Exception, settings: LoaderSettings,
                    diagnostics: Optional[List[LoadDiagnostic]]) -> None:
    if settings.log_exception:
        logger.exception("Image load failed: %s", exc)
    else:
        logger.debug("Image load failed: %s", exc)
    if diagnostics is not None:
        diagnostics.append(LoadDiagnostic.from_exception(exc))


def load_image(texture: TextureImage, data, settings: Optional[LoaderSettings] = None, *,
               mark_non_readable: Optional[bool] = None,
               decoder: Optional[BaseDecoder] = None,
               scheduler: Optional[JobScheduler] = None,
               diagnostics: Optional[List[LoadDiagnostic]] = None) -> bool:
    """Load image data into an existing texture, blocking until done.

    Returns True if the data could be loaded, False otherwise.
    """
    settings = _resolve_settings(settings, mark_non_readable)
    try:
        _check_data(data)
        with ImageImportSession(data, settings, decoder, scheduler) as session:
            session.load_into_texture(texture)
        return True
    except Exception as exc:
        _report_failure(exc, settings, diagnostics)
        return False


async def load_image_async(texture: TextureImage, data,
                           settings: Optional[LoaderSettings] = None, *,
                           mark_non_readable: Optional[bool] = None,
                           decoder: Optional[BaseDecoder] = None,
                           scheduler: Optional[JobScheduler] = None,
                           diagnostics: Optional[List[LoadDiagnostic]] = None) -> bool:
    """Load image data into an existing texture without blocking the event loop."""
    settings = _resolve_settings(settings, mark_non_readable)
    try:
        _check_data(data)
        session = await _open_session_async(data, settings, decoder, scheduler)
        with session:
            await session.load_into_texture_async(texture)
        return True
    except Exception as exc:
        _report_failure(exc, settings, diagnostics)
        return False


def create_from_image(data, settings: Optional[LoaderSettings] = None, *,
                      decoder: Optional[BaseDecoder] = None,
                      scheduler: Optional[JobScheduler] = None,
                      diagnostics: Optional[List[LoadDiagnostic]] = None
                      ) -> Optional[TextureImage]:
    """Create a new texture from image data.

    Returns the texture, or None if the data cannot be loaded.
    """
    settings = _resolve_settings(settings, None)
    try:
        _check_data(data)
        with ImageImportSession(data, settings, decoder, scheduler) as session:
            return session.create_new_texture()
    except Exception as exc:
        _report_failure(exc, settings, diagnostics)
        return None


async def create_from_image_async(data, settings: Optional[LoaderSettings] = None, *,
                                  decoder: Optional[BaseDecoder] = None,
                                  scheduler: Optional[JobScheduler] = None,
                                  diagnostics: Optional[List[LoadDiagnostic]] = None
                                  ) -> Optional[TextureImage]:
    """Create a new texture from image data without blocking the event loop."""
    settings = _resolve_settings(settings, None)
    try:
        _check_data(data)
        session = await _open_session_async(data, settings, decoder, scheduler)
        with session:
            return await session.create_new_texture_async()
    except Exception as exc:
        _report_failure(exc, settings, diagnostics)
        return None
