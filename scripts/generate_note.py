"""Generate an augmented note from local files.

Runs the full two-phase pipeline against the configured producer and prints
progress events as they arrive.

Usage:
    uv run python scripts/generate_note.py <file> [<file> ...] \
        [--topic <name>] [--instructions <text>] [--dump <path>] [--quiet]

Examples:
    # Build a note from a lecture PDF and dump it to JSON
    uv run python scripts/generate_note.py lecture.pdf --topic "Heart Failure" \
        --dump /tmp/heart-failure.json
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path

# Ensure augment_engine is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

_INLINE_MIME_PREFIXES = ("text/",)
_INLINE_MIME_TYPES = {"application/json", "application/xml"}


def load_document(path: Path):
    from augment_engine.core.schemas_note import SourceDocument

    mime_type = mimetypes.guess_type(path.name)[0] or "text/plain"
    if mime_type.startswith(_INLINE_MIME_PREFIXES) or mime_type in _INLINE_MIME_TYPES:
        return SourceDocument(
            name=path.name,
            mime_type="text/plain",
            text=path.read_text(encoding="utf-8", errors="replace"),
        )
    return SourceDocument(
        name=path.name,
        mime_type=mime_type,
        data=base64.b64encode(path.read_bytes()).decode("ascii"),
    )


async def run_generation(
    paths: list[str],
    topic: str,
    instructions: str | None,
    dump_path: str | None,
    quiet: bool,
) -> int:
    from augment_engine.core.errors import NoteAssemblyError
    from augment_engine.core.progress import PipelineEventType
    from augment_engine.core.schemas_note import NoteRequest
    from augment_engine.services.note_pipeline import NoteAssembler

    documents = []
    for raw in paths:
        path = Path(raw)
        if not path.is_file():
            print(f"ERROR: {path} is not a file")
            return 1
        documents.append(load_document(path))

    request = NoteRequest(topic=topic, documents=documents, instructions=instructions)
    print(f"\n{'='*60}")
    print(f"Generating note for '{topic}' from {len(documents)} file(s)...")

    note = None
    try:
        async for event in NoteAssembler().stream(request):
            if event.type == PipelineEventType.STAGE_CHANGED:
                print(f"  [{event.phase.value}] -> {event.stage}")
            elif event.type == PipelineEventType.CONTINUATION_STARTED:
                print(f"  Continuing narrative (round {event.data['round']})...")
            elif event.type == PipelineEventType.STRUCTURE_READY:
                document = event.data["document"]
                print(f"  Structured document: {len(document.nodes)} nodes, {len(document.links)} links")
            elif event.type == PipelineEventType.NARRATIVE_DELTA and not quiet:
                print(event.data["text"], end="", flush=True)
            elif event.type == PipelineEventType.COMPLETED:
                note = event.data["note"]
    except NoteAssemblyError as e:
        print(f"\nERROR ({e.code}): {e}")
        return 1

    if note is None:
        print("\nERROR: pipeline finished without a note")
        return 1

    print(f"\n{'='*60}")
    print(f"Title: {note.title}")
    print(f"Narrative: {len(note.narrative)} chars")
    print(f"Sources: {len(note.sources)}")
    print(f"Topics: {', '.join(t.name for t in note.topics[:8])}")

    if dump_path:
        path = Path(dump_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(note.model_dump(mode="json"), indent=2))
        print(f"Note written to {path}")

    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Generate an augmented study note from local files",
    )
    parser.add_argument("files", nargs="+", help="Source documents (PDF, image or text)")
    parser.add_argument("--topic", default="General Topic", help="Topic name")
    parser.add_argument("--instructions", help="Extra instructions for the producer")
    parser.add_argument("--dump", metavar="PATH", help="Dump the note as JSON to file")
    parser.add_argument("--quiet", action="store_true", help="Don't echo narrative text")
    args = parser.parse_args()

    sys.exit(asyncio.run(run_generation(
        paths=args.files,
        topic=args.topic,
        instructions=args.instructions,
        dump_path=args.dump,
        quiet=args.quiet,
    )))


if __name__ == "__main__":
    main()
