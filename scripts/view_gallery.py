"""
Fetch a gallery from the API and print its status and image URLs.
Usage: python scripts/view_gallery.py a1b2c3d4_eyJsb2NhdGlvbiI6...
       python scripts/view_gallery.py a1b2c3d4_eyJsb2NhdGlvbiI6... --inputs
Use --base to point at a deployment (default: http://127.0.0.1:8001)
"""
import argparse
import sys

import httpx


def main():
    p = argparse.ArgumentParser(description="View a gallery's status and image URLs")
    p.add_argument("gallery_id", help="Gallery ID (the last segment of the Magic Link)")
    p.add_argument("--base", default="http://127.0.0.1:8001", help="Base URL of the API")
    p.add_argument("--inputs", action="store_true", help="Also print the memory inputs encoded in the ID")
    args = p.parse_args()

    base = args.base.rstrip("/")
    url = f"{base}/api/gallery/{args.gallery_id}"

    print(f"Fetching: {url}")
    try:
        r = httpx.get(url, timeout=15)
    except httpx.HTTPError as e:
        print("Request failed:", e)
        sys.exit(1)

    if r.status_code != 200:
        print(f"Error {r.status_code}:", r.text[:300])
        sys.exit(1)

    gallery = r.json().get("gallery") or {}
    progress = gallery.get("progress") or {}
    print(f"Gallery: {gallery.get('id')}")
    print(f"Status: {gallery.get('status')} ({progress.get('completed', 0)}/{progress.get('total', 4)} completed, "
          f"{progress.get('failed', 0)} failed)")
    print(f"Expires: {gallery.get('expiresAt')} ({gallery.get('timeRemaining', 0) // 3_600_000}h left)")
    if gallery.get("purchased"):
        print("Purchased: yes")

    if args.inputs:
        inputs = gallery.get("userInputs") or {}
        print("\nMemory:")
        for key in ("location", "atmosphere", "focus", "detail", "feelings", "season", "aspectRatio"):
            print(f"  {key}: {inputs.get(key)}")

    print("\nImages:")
    for img in gallery.get("images") or []:
        line = f"  {img.get('index')}. {img.get('status')}"
        if img.get("webUrl"):
            line += f"  web={img['webUrl']}"
        if img.get("error"):
            line += f"  error={img['error']}"
        print(line)


if __name__ == "__main__":
    main()
