"""Import session: decode, size, transfer, and mip-filter one image.

An ``ImageImportSession`` owns the decoded bitmap from construction until
``close()``. Construction performs every check that can fail (input, decode,
dimensions, pixel layout), so once a session exists the scheduled job chain
only has to run. Closing a session waits for any scheduled work that still
reads the bitmap, then releases it exactly once.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Optional, Tuple

from .config import LoaderSettings
from .core.decoders import AutoDecoder, BaseDecoder, DecodedImage
from .core.errors import (
    DecodeError, DimensionTooLargeError, InvalidArgumentError, TextureLoadError,
)
from .core.formats import OutputLayout, resolve_layout, source_bytes_per_pixel
from .core.jobs import JobHandle, JobScheduler, get_default_scheduler, run_in_thread
from .core.mipchain import MAX_TEXTURE_DIMENSION, calculate_mipmap_count, mip_dimensions
from .core.texture import TextureImage
from .phases.mipmap import build_mipmap_stages
from .phases.transfer import RowTransferStage

logger = logging.getLogger("texture_loader.session")


class SessionState(Enum):
    """Lifecycle of an import session."""

    CONSTRUCTED = "constructed"
    IMPORTING = "importing"
    COMPLETED = "completed"
    RELEASED = "released"


class ImageImportSession:
    """Decode image bytes and import them into textures with a mip chain."""

    max_texture_dimension = MAX_TEXTURE_DIMENSION

    def __init__(self, data, settings: Optional[LoaderSettings] = None,
                 decoder: Optional[BaseDecoder] = None,
                 scheduler: Optional[JobScheduler] = None):
        self.settings = settings or LoaderSettings.default()
        self.state = SessionState.RELEASED
        self.layout: Optional[OutputLayout] = None
        self._image: Optional[DecodedImage] = None
        self._final_job: Optional[JobHandle] = None
        self._scheduler = scheduler
        self._owns_scheduler = False
        # Held while scheduling and while closing.
        self._lock = threading.RLock()

        if data is None or len(data) == 0:
            raise InvalidArgumentError("Input data is null or empty.")

        decoder = decoder or AutoDecoder()
        try:
            image = decoder.decode(data, self.settings.format)
        except TextureLoadError:
            raise
        except Exception as exc:
            raise DecodeError(f"Failed to decode image data: {exc}") from exc
        self._image = image

        try:
            if (image.width > self.max_texture_dimension
                    or image.height > self.max_texture_dimension):
                raise DimensionTooLargeError(
                    f"Texture size {image.width}x{image.height} exceeds maximum "
                    f"dimension {self.max_texture_dimension}."
                )
            self.layout = resolve_layout(image.pixel_type, image.bits_per_pixel)
            image.check_row_bytes(
                image.width * source_bytes_per_pixel(image.pixel_type, image.bits_per_pixel)
            )
        except BaseException:
            self._release_image()
            raise

        self.state = SessionState.CONSTRUCTED
        logger.debug(
            "Session constructed: %dx%d %s/%dbpp -> %s",
            image.width, image.height, image.pixel_type.value,
            image.bits_per_pixel, self.layout.texture_format.value,
        )

    @property
    def width(self) -> int:
        return self._image.width if self._image is not None else 0

    @property
    def height(self) -> int:
        return self._image.height if self._image is not None else 0

    @property
    def image(self) -> DecodedImage:
        self._check_open()
        return self._image

    def calculate_mipmap_count(self, force_auto: bool = False) -> int:
        s = self.settings
        return calculate_mipmap_count(
            self.width, self.height,
            generate_mipmap=s.generate_mipmap,
            auto_mipmap_count=s.auto_mipmap_count,
            mipmap_count=s.mipmap_count,
            force_auto=force_auto,
        )

    def mip_dimensions(self, level: int) -> Tuple[int, int]:
        return mip_dimensions(self.width, self.height, level)

    def _get_scheduler(self) -> JobScheduler:
        if self._scheduler is None:
            if self.settings.max_workers is not None:
                self._scheduler = JobScheduler(self.settings.max_workers)
                self._owns_scheduler = True
            else:
                self._scheduler = get_default_scheduler()
        return self._scheduler

    def schedule_import(self, texture: TextureImage) -> JobHandle:
        """Schedule row transfer and the mip chain into ``texture``.

        Returns the handle of the last stage; it completes only after every
        earlier stage has.
        """
        with self._lock:
            self._check_open()
            if self.state is SessionState.IMPORTING:
                raise RuntimeError("An import is already in progress for this session")
            if (texture.width, texture.height) != (self.width, self.height):
                raise ValueError(
                    f"Texture is {texture.width}x{texture.height}, "
                    f"image is {self.width}x{self.height}"
                )
            if texture.layout != self.layout:
                raise ValueError(
                    f"Texture format {texture.texture_format.value} does not match "
                    f"{self.layout.texture_format.value}"
                )

            s = self.settings
            transfer = RowTransferStage(
                self._image, self.layout, texture.level_data(0),
                batch_rows=s.transfer_batch_rows,
            )
            stages = build_mipmap_stages(texture, batch_size=s.mipmap_batch_size)

            scheduler = self._get_scheduler()
            self.state = SessionState.IMPORTING
            job = scheduler.schedule(transfer.units(), label="transfer")
            for stage in stages:
                job = scheduler.schedule(
                    stage.units(), depends_on=job, label=f"mip{stage.level}"
                )
            self._final_job = job
        logger.debug(
            "Scheduled import of %dx%d into %d levels", self.width, self.height, texture.mip_count
        )
        return job

    def _finish_import(self, texture: TextureImage) -> None:
        self._final_job = None
        self.state = SessionState.COMPLETED
        texture.apply(mark_non_readable=self.settings.mark_non_readable)

    def _abandon_import(self, job: JobHandle) -> None:
        """Leave ``job`` running; return to CONSTRUCTED once it finishes."""
        logger.debug("Import %r abandoned by its caller", job.label)
        job.add_done_callback(self._reset_abandoned)

    def _reset_abandoned(self, job: JobHandle) -> None:
        with self._lock:
            if self.state is SessionState.IMPORTING and self._final_job is job:
                self._final_job = None
                self.state = SessionState.CONSTRUCTED

    def _complete(self, job: JobHandle, texture: TextureImage) -> None:
        try:
            job.complete()
        except BaseException:
            self.state = SessionState.CONSTRUCTED
            raise
        self._finish_import(texture)

    async def _complete_async(self, job: JobHandle, texture: TextureImage) -> None:
        try:
            await job.wait_async()
        except asyncio.CancelledError:
            self._abandon_import(job)
            raise
        except BaseException:
            self.state = SessionState.CONSTRUCTED
            raise
        self._finish_import(texture)

    async def _schedule_async(self, texture: TextureImage) -> JobHandle:
        return await run_in_thread(
            self.schedule_import, texture, on_abandon=self._abandon_import
        )

    def _new_texture(self) -> TextureImage:
        return TextureImage(
            self.width, self.height, self.layout,
            self.calculate_mipmap_count(), linear=self.settings.linear,
        )

    def _reinitialize(self, texture: TextureImage) -> None:
        texture.reinitialize(
            self.width, self.height, self.layout, self.calculate_mipmap_count(force_auto=True)
        )

    def create_new_texture(self) -> TextureImage:
        """Create, fill and apply a new texture, blocking until done."""
        self._check_open()
        texture = self._new_texture()
        self._complete(self.schedule_import(texture), texture)
        return texture

    async def create_new_texture_async(self) -> TextureImage:
        """Create, fill and apply a new texture without blocking the event loop."""
        self._check_open()
        texture = self._new_texture()
        job = await self._schedule_async(texture)
        await self._complete_async(job, texture)
        return texture

    def load_into_texture(self, texture: TextureImage) -> None:
        """Resize ``texture`` to the image, fill it, and apply it."""
        self._check_open()
        self._reinitialize(texture)
        self._complete(self.schedule_import(texture), texture)

    async def load_into_texture_async(self, texture: TextureImage) -> None:
        self._check_open()
        self._reinitialize(texture)
        job = await self._schedule_async(texture)
        await self._complete_async(job, texture)

    def _check_open(self) -> None:
        if self.state is SessionState.RELEASED:
            raise RuntimeError("Import session has been released")

    def _release_image(self) -> None:
        if self._image is not None:
            self._image.release()
            self._image = None
        self.state = SessionState.RELEASED

    def close(self) -> None:
        """Wait for outstanding work, then release the decoded bitmap."""
        with self._lock:
            if self.state is SessionState.RELEASED:
                return
            job = self._final_job
            if job is not None and not job.is_completed:
                # The transfer stage may still be reading scanlines.
                logger.warning("Closing import session with pending work; waiting for it.")
                job.wait()
            self._final_job = None
            self._release_image()
            scheduler = self._scheduler if self._owns_scheduler else None
            self._scheduler = None
            self._owns_scheduler = False
        # Outside the lock: worker threads may still be running done-callbacks
        # that take it.
        if scheduler is not None:
            scheduler.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __repr__(self) -> str:
        fmt = self.layout.texture_format.value if self.layout else "?"
        return (
            f"ImageImportSession({self.width}x{self.height}, {fmt}, "
            f"state={self.state.value})"
        )
