"""Command-line interface for the texture loader."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from tqdm import tqdm

from .config import LoaderConfig
from .core.export import save_mip_levels, supports_dds, write_dds
from .core.formats import ImageFormat
from .core.logging import setup_logging_from_config
from .loader import LoadDiagnostic, create_from_image, create_from_image_async

logger = logging.getLogger("texture_loader")

_IMAGE_EXTENSIONS = {
    ".bmp", ".dib", ".ico", ".jpg", ".jpeg", ".pbm", ".pgm", ".ppm", ".png",
    ".tga", ".tif", ".tiff", ".psd", ".dds", ".gif", ".hdr", ".exr",
    ".j2k", ".jp2", ".pfm", ".webp",
}


def collect_inputs(paths: List[str]) -> List[Path]:
    """Expand files and directories into a sorted, de-duplicated file list."""
    found = []
    seen = set()
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            candidates = sorted(
                p for p in path.rglob("*")
                if p.is_file() and p.suffix.lower() in _IMAGE_EXTENSIONS
            )
        else:
            candidates = [path]
        for candidate in candidates:
            key = candidate.resolve()
            if key not in seen:
                seen.add(key)
                found.append(candidate)
    return found


def _export(texture, source: Path, config: LoaderConfig) -> List[str]:
    written = []
    stem = source.stem
    formats = {fmt.lower() for fmt in config.export_formats}
    if "png" in formats:
        written.extend(
            entry["path"] for entry in save_mip_levels(texture, config.output_dir, stem)
        )
    if "dds" in formats:
        if supports_dds(texture.texture_format):
            dds_path = os.path.join(config.output_dir, f"{stem}.dds")
            write_dds(texture, dds_path)
            written.append(dds_path)
        else:
            logger.warning(
                "Skipping DDS for %s: no uncompressed DDS format for %s",
                source.name, texture.texture_format.value,
            )
    return written


def _import_one(path: Path, config: LoaderConfig,
                use_async: bool) -> Tuple[bool, Optional[LoadDiagnostic]]:
    try:
        data = path.read_bytes()
    except OSError as exc:
        logger.error("Cannot read %s: %s", path, exc)
        return False, LoadDiagnostic.from_exception(exc)

    diagnostics: List[LoadDiagnostic] = []
    if use_async:
        texture = asyncio.run(
            create_from_image_async(data, config.loader, diagnostics=diagnostics)
        )
    else:
        texture = create_from_image(data, config.loader, diagnostics=diagnostics)
    if texture is None:
        return False, diagnostics[0] if diagnostics else None

    try:
        written = _export(texture, path, config)
    except Exception as exc:
        logger.error("Export failed for %s: %s", path, exc, exc_info=True)
        return False, LoadDiagnostic.from_exception(exc)
    logger.info(
        "%s -> %dx%d %s, %d mip levels, %d file(s)",
        path.name, texture.width, texture.height,
        texture.texture_format.value, texture.mip_count, len(written),
    )
    return True, None


def main(argv: Optional[List[str]] = None):
    """Parse CLI arguments, import every input, and export the results."""
    parser = argparse.ArgumentParser(
        description="Decode images into GPU-ready textures with mip chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  texloader image.png -o ./out
  texloader ./textures --export png,dds
  texloader --config config.yaml ./textures
  texloader photo.tga --format targa --mipmap-count 4
  texloader --generate-config
        """
    )
    parser.add_argument("inputs", nargs="*", help="Image files or directories")
    parser.add_argument("--output", "-o", help="Output directory")
    parser.add_argument("--config", "-c", help="Path to config YAML")
    parser.add_argument("--format",
                        help="Source format hint (e.g. png, targa, dds); default: detect")
    parser.add_argument("--no-mipmap", action="store_true",
                        help="Import only the base level")
    parser.add_argument("--mipmap-count", type=int,
                        help="Fixed mip count (disables automatic count)")
    parser.add_argument("--linear", action="store_true",
                        help="Mark textures as linear instead of sRGB")
    parser.add_argument("--workers", type=int, help="Worker threads (0 = inline)")
    parser.add_argument("--export", help="Comma-separated export formats: png,dds")
    parser.add_argument("--async", dest="use_async", action="store_true",
                        help="Use the asynchronous import path")
    parser.add_argument("--generate-config", action="store_true",
                        help="Generate default config.yaml")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

    args = parser.parse_args(argv)

    if args.generate_config:
        config = LoaderConfig()
        dest = args.config or args.output or "config.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "config.yaml")
        config.to_yaml(dest)
        logger.info("Generated default %s", dest)
        print(f"Generated default {dest}")
        return

    # Ensure early validation warnings from from_yaml() are visible on stderr
    # before logging is configured.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config:
        if not os.path.exists(args.config):
            logger.error("Config file not found: %s", args.config)
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        try:
            config = LoaderConfig.from_yaml(args.config)
        except ValueError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(1)
    else:
        config = LoaderConfig()

    # CLI overrides
    if args.output:
        config.output_dir = args.output
    if args.format:
        try:
            config.loader.format = ImageFormat(args.format.lower())
        except ValueError:
            valid = sorted(f.value for f in ImageFormat)
            print(f"Error: Unknown --format '{args.format}'. Valid: {valid}")
            logger.error("Invalid --format value '%s'", args.format)
            sys.exit(1)
    if args.no_mipmap:
        config.loader.generate_mipmap = False
    if args.mipmap_count is not None:
        config.loader.auto_mipmap_count = False
        config.loader.mipmap_count = args.mipmap_count
    if args.linear:
        config.loader.linear = True
    if args.workers is not None:
        config.loader.max_workers = args.workers
    if args.export:
        config.export_formats = [f.strip() for f in args.export.split(",") if f.strip()]
    if args.log_level:
        config.log_level = args.log_level

    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    setup_logging_from_config(config)

    inputs = collect_inputs(args.inputs)
    if not inputs:
        logger.error("No input images given.")
        print("Error: No input images given.")
        sys.exit(1)

    os.makedirs(config.output_dir, exist_ok=True)
    failures = []
    for path in tqdm(inputs, desc="Importing", unit="image"):
        ok, diagnostic = _import_one(path, config, args.use_async)
        if not ok:
            failures.append((path, diagnostic))

    for path, diagnostic in failures:
        reason = f"{diagnostic.error_type}: {diagnostic.message}" if diagnostic else "unknown"
        print(f"FAILED {path}: {reason}")
    logger.info("Imported %d/%d image(s)", len(inputs) - len(failures), len(inputs))

    if failures:
        sys.exit(1)


if __name__ == "__main__":
    main()
