from __future__ import annotations

import argparse
import json
import time
from pathlib import Path

from dotenv import load_dotenv
from tqdm import tqdm

from tourism_locator.config import ServiceConfig
from tourism_locator.contracts import TriState
from tourism_locator.geo_mapping import GeoMappingLog
from tourism_locator.io import read_image_bytes, safe_image_id_from_relpath, write_json
from tourism_locator.logger import setup_logging
from tourism_locator.pipeline import LocationInferenceEngine
from tourism_locator.presentation import describe_result


def _iter_images(input_dir: Path):
    exts = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}
    for p in sorted(input_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in exts:
            yield p


def main() -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Infer where tourist photos were taken (target: Jingzhou old town).")
    parser.add_argument("--input", required=True, type=str, help="Input directory containing images.")
    parser.add_argument("--output", required=True, type=str, help="Output directory (creates results/ + manifest.jsonl).")
    parser.add_argument("--commit", action="store_true", help="Record target-region results in the geo-mapping log.")
    args = parser.parse_args()

    config = ServiceConfig.from_env()
    setup_logging(is_production=config.is_production)
    config.validate_for_production()

    input_dir = Path(args.input)
    output_dir = Path(args.output)
    results_dir = output_dir / "results"
    manifest_path = output_dir / "manifest.jsonl"

    if not input_dir.exists():
        raise FileNotFoundError(f"Input dir not found: {input_dir}")

    images = list(_iter_images(input_dir))
    if not images:
        print(f"No images found under {input_dir}")
        return 0

    geo_log = GeoMappingLog() if args.commit else None
    engine = LocationInferenceEngine(config, geo_log=geo_log)

    stats = {
        "total": 0,
        "target_true": 0,
        "target_false": 0,
        "target_unknown": 0,
        "fallback": 0,
        "outage": 0,
        "committed": 0,
    }

    output_dir.mkdir(parents=True, exist_ok=True)
    t0 = time.perf_counter()
    with open(manifest_path, "a", encoding="utf-8") as manifest_fp:
        for img_path in tqdm(images, desc="Locating", unit="img"):
            rel = img_path.relative_to(input_dir).as_posix()
            image_id = safe_image_id_from_relpath(rel)
            image = read_image_bytes(str(img_path))

            result = engine.analyze(image)
            payload = result.model_dump(mode="json")
            payload["description"] = describe_result(result)
            write_json(str(results_dir / f"{image_id}.json"), payload)

            record = {
                "image_id": image_id,
                "source_image": str(img_path),
                "location": result.location.name,
                "confidence": round(result.location.confidence, 4),
                "is_target_region": result.is_target_region.value,
                "resolution": result.resolution.value,
            }
            manifest_fp.write(json.dumps(record, ensure_ascii=False) + "\n")
            manifest_fp.flush()

            stats["total"] += 1
            stats[f"target_{result.is_target_region.value}"] += 1
            if result.resolution.value in ("fallback", "outage"):
                stats[result.resolution.value] += 1

            if args.commit and result.is_target_region == TriState.TRUE:
                if engine.commit_mapping(image, result, image_id=image_id) is not None:
                    stats["committed"] += 1

    t1 = time.perf_counter()
    print(
        "Done.\n"
        f"- total: {stats['total']}\n"
        f"- target region: yes={stats['target_true']} no={stats['target_false']} unknown={stats['target_unknown']}\n"
        f"- via fallback: {stats['fallback']}\n"
        f"- outage:       {stats['outage']}\n"
        f"- committed:    {stats['committed']}\n"
        f"- elapsed_s: {t1 - t0:.2f}\n"
        f"- results: {results_dir.resolve()}\n"
        f"- manifest: {manifest_path.resolve()}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
