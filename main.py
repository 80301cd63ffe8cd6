"""Mentor - Game Screenshot Analysis Tool

Simple CLI for analyzing one screenshot.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from mentor.agents.orchestrator import analyze
from mentor.errors import AnalysisCancelled, MentorError
from mentor.models.analysis import AnalysisRequest
from mentor.models.events import TextDelta, ToolCallResult, ToolCallStart
from mentor.models.progress import AnalysisProgress, JobStatus
from mentor.services.image import detect_mime_type

DEFAULT_PROMPT = "What should I do next?"

STATUS_MARKERS = {
    JobStatus.PENDING: "[ ]",
    JobStatus.IN_PROGRESS: "[~]",
    JobStatus.COMPLETED: "[+]",
    JobStatus.FAILED: "[!]",
}


class ConsoleProgress:
    """Prints a job line whenever its status changes."""

    def __init__(self) -> None:
        self._seen: dict[str, JobStatus] = {}

    def report(self, progress: AnalysisProgress) -> None:
        for job in progress.jobs:
            if self._seen.get(job.tag) == job.status:
                continue
            self._seen[job.tag] = job.status
            print(f"\n  {STATUS_MARKERS[job.status]} {job.name} ({progress.total_percentage:.0f}%)")


def echo_stream(event) -> None:
    if isinstance(event, TextDelta):
        print(".", end="", flush=True)
    elif isinstance(event, ToolCallStart):
        print(f"\n[~] Model called {event.name}", flush=True)
    elif isinstance(event, ToolCallResult) and event.is_error:
        print(f"\n[!] {event.name} failed: {event.content[:200]}", flush=True)


async def run_analysis(args: argparse.Namespace) -> int:
    image_path = Path(args.image)
    if not image_path.is_file():
        print(f"Error: image file not found: {image_path}")
        return 1

    image_data = image_path.read_bytes()
    request = AnalysisRequest(
        image_data=image_data,
        mime_type=detect_mime_type(image_data, str(image_path)),
        prompt=args.prompt,
        domain=args.domain,
        rule_files=tuple(args.rules or ()),
        provider=args.provider,
    )

    print(f"Analyzing screenshot: {image_path}")
    print(f"Prompt: {request.prompt}")
    print("-" * 50)

    try:
        result = await analyze(request, progress_sink=ConsoleProgress(), stream_sink=echo_stream)
    except AnalysisCancelled:
        print("\n[!] Analysis cancelled")
        return 130
    except MentorError as e:
        print(f"\n[!] Error: {e}")
        return 1

    if args.json:
        print()
        print(result.model_dump_json(indent=2))
        return 0

    print(f"\n\n{'=' * 50}")
    print("=== Analysis Complete ===")
    print(f"{'=' * 50}")
    print(f"Provider: {result.provider_used}")
    print(f"Confidence: {result.confidence:.0%}")
    print(f"Generated: {result.generated_at:%Y-%m-%d %H:%M:%SZ}")
    print(f"\nSummary: {result.summary}")
    print(f"\nAnalysis: {result.analysis}")
    print("\nRecommendations:")
    for item in result.recommendations:
        print(f"  [{item.priority.value.upper()}] {item.action}")
        print(f"      Reasoning: {item.reasoning}")
        if item.context:
            print(f"      Context: {item.context}")
        if item.has_reference_link:
            print(f"      Source: {item.reference_link}")
        print()
    if result.search_results:
        print(f"Sources consulted: {len(result.search_results)}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Mentor Game Screenshot Analysis Tool")
    parser.add_argument("--image", "-i", required=True, help="Path to the screenshot image file")
    parser.add_argument("--prompt", "-p", default=DEFAULT_PROMPT, help="Question about the screenshot")
    parser.add_argument("--domain", "-d", default="", help="Game name, used for research and rules")
    parser.add_argument("--rules", "-r", nargs="*", help="Rule file names to load for the domain")
    parser.add_argument("--provider", help="Provider profile name (default: from config)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    args = parser.parse_args()

    sys.exit(asyncio.run(run_analysis(args)))


if __name__ == "__main__":
    main()
