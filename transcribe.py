"""Command-line transcription of a local video, without the web app."""

import argparse
import os
import sys

from dotenv import load_dotenv

from config import Config
from errors import PipelineError
from media import MediaToolkit
from transcription import PROVIDERS, segments_to_srt, transcribe_with_openai, transcribe_with_whisper_cpp

load_dotenv()


def write_txt(text: str, output_path: str) -> None:
    """Write plain-text transcript."""
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(text.strip() + "\n")
    print(f"Transcript saved to {output_path}")


def write_srt(segments, output_path: str) -> None:
    """Write SRT subtitle file."""
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(segments_to_srt(segments))
    print(f"Subtitles saved to {output_path}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Transcribe a video file with whisper.cpp or OpenAI Whisper.")
    parser.add_argument("video", help="Path to the video file")
    parser.add_argument("--provider", choices=PROVIDERS, default=Config.TRANSCRIBE_PROVIDER)
    parser.add_argument("--model", default=Config.WHISPER_MODEL_PATH, help="whisper.cpp model file")
    args = parser.parse_args(argv)

    video_path = args.video
    if not os.path.isfile(video_path):
        print(f"Error: File not found: {video_path}")
        return 1

    if args.provider == "openai" and not os.environ.get("OPENAI_API_KEY"):
        print("Error: OPENAI_API_KEY not set. Copy .env.example to .env and add your key.")
        return 1

    toolkit = MediaToolkit(Config.FFMPEG_BIN, Config.FFPROBE_BIN)
    base = os.path.splitext(video_path)[0]

    print(f"Transcribing {video_path} with {args.provider}...")
    try:
        if args.provider == "openai":
            text, segments = transcribe_with_openai(video_path, toolkit, Config.TMP_DIR)
        else:
            text, segments = transcribe_with_whisper_cpp(
                video_path, toolkit, Config.WHISPER_BIN, args.model, Config.TMP_DIR
            )
    except PipelineError as exc:
        print(f"Error: {exc.message}")
        return 1

    write_txt(text, f"{base}_transcript.txt")
    write_srt(segments, f"{base}_transcript.srt")
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
