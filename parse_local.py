"""Utility to test the card parsing logic locally.

This script reads an image file from disk, runs OCR and the card parsing
pipeline, and writes the parsed records plus the deskewed image to an output
directory. To invoke it, run::

    python parse_local.py --input /path/to/image.jpg --output out_dir

Pass ``--ocr-json`` with a saved Vision ``AnnotateImageResponse`` to skip the
OCR call. The script does not interact with Azure storage and is intended
solely for local experimentation.
"""
import argparse
import json
from pathlib import Path

from match_card import card_pipeline
from match_card.card_config import ParserConfig
from match_card.image_io import deskew_image_bytes
from match_card.ocr_client import load_annotation_json


def main() -> None:
    parser = argparse.ArgumentParser(description="Parse match-result cards locally")
    parser.add_argument("--input", required=True, help="Path to input image")
    parser.add_argument("--output", required=True, help="Directory to save outputs")
    parser.add_argument("--ocr-json", help="Saved Vision response to use instead of calling OCR")
    args = parser.parse_args()
    input_path = Path(args.input)
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)
    data = input_path.read_bytes()

    config = ParserConfig.from_env()
    if args.ocr_json:
        annotation = load_annotation_json(Path(args.ocr_json).read_text(encoding="utf-8"))
        result = card_pipeline.parse_annotation(annotation, config)
    else:
        result = card_pipeline.parse_image_bytes(data, config)

    if not result.records:
        print("No cards detected.")
    records_path = output_dir / f"{input_path.stem}.json"
    records_path.write_text(
        json.dumps([r.to_dict() for r in result.records], ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    print(f"Saved {records_path} ({len(result.records)} cards, {result.strategy})")

    image_path = output_dir / f"{card_pipeline.class_label(result.records)}_{input_path.stem}.jpg"
    image_path.write_bytes(deskew_image_bytes(data, result.rotation_angle))
    print(f"Saved {image_path} (rotated {result.rotation_angle:.2f} deg)")


if __name__ == "__main__":
    main()
