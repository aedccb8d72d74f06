#!/usr/bin/env python3
"""
Export OpenAPI specification for the Flight-Group Booking Platform API.
"""

import json
import sys
import os

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flightgroup_booking_platform.main import app


def export_openapi_spec(output_file: str = "openapi.json") -> bool:
    """Export the OpenAPI specification to a JSON file."""
    try:
        openapi_schema = app.openapi()

        with open(output_file, "w", encoding="utf-8") as f:
            json.dump(openapi_schema, f, indent=2, ensure_ascii=False)

        print(f"✅ OpenAPI specification exported to: {output_file}")
        print(f"🏷️  API title: {openapi_schema.get('info', {}).get('title', 'unknown')}")

        paths = openapi_schema.get('paths', {})
        endpoint_count = sum(len(methods) for methods in paths.values())
        print(f"🔗 Total endpoints: {endpoint_count}")

        print(f"\n📋 Available paths:")
        for path in sorted(paths.keys()):
            methods = list(paths[path].keys())
            print(f"  {path}: {', '.join(method.upper() for method in methods)}")

        return True

    except Exception as e:
        print(f"❌ Failed to export OpenAPI specification: {e}")
        return False


def main():
    print("🔄 Exporting OpenAPI specification...")
    print("=" * 50)

    if not export_openapi_spec(*sys.argv[1:2]):
        sys.exit(1)


if __name__ == "__main__":
    main()
