"""
Run the disease analysis for one disease name from the command line.

Usage:
    python scripts/disease_analysis.py "Powdery Mildew" --confidence 0.85
"""
import argparse
import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from leafscan import config, dependencies
from leafscan.services import disease_analysis


def print_list(title, items):
    print(f"\n{title}:")
    if not items:
        print("   (none)")
    for item in items:
        print(f"   - {item}")


async def run(disease_name: str, confidence: float) -> int:
    client = dependencies.build_text_client()
    if client is None:
        print("⚠️ OPENROUTER_API_KEY not set - the fallback record will be shown")
    cache = disease_analysis.configure(client, ttl=config.DISEASE_ANALYSIS_TTL)

    print("=" * 60)
    print(f"Disease analysis: {disease_name} (confidence {confidence:.2f})")
    print("=" * 60)

    try:
        details = await cache.get(disease_name, confidence)
    finally:
        if client is not None:
            await client.close()

    print(f"\nName: {details.disease_name}")
    print(f"Scientific name: {details.scientific_name or '-'}")
    print(f"Severity: {details.severity.value}")
    print(f"Contagious: {'yes' if details.is_contagious else 'no'}")
    print(f"\nDescription:\n   {details.description}")
    print_list("Causes", details.causes)
    print_list("Symptoms", details.symptoms)
    print_list("Prevention", details.prevention)
    print_list("Treatment", details.treatment)
    print_list("Affected plants", details.affected_plants)

    if disease_analysis.is_fallback(details):
        print("\n✗ Text model did not return an analysis")
        return 1
    print("\n✓ Done")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Generate a disease analysis with the configured text model")
    parser.add_argument("disease", help="Disease name, e.g. 'Powdery Mildew'")
    parser.add_argument("--confidence", type=float, default=0.5, help="Detection confidence 0-1 (default 0.5)")
    args = parser.parse_args()

    if not 0.0 <= args.confidence <= 1.0:
        parser.error("--confidence must be between 0 and 1")

    sys.exit(asyncio.run(run(args.disease, args.confidence)))


if __name__ == "__main__":
    main()
