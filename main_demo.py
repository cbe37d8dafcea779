#!/usr/bin/env python3
"""
SparseFlow Tracker - Demo

Tracks one rotated region through a video file or camera feed:
1. Opens the source and reads the first frame
2. Takes the region from --region, or lets you drag a box (cv2.selectROI)
3. Tracks frame-to-frame and draws the region (green = active, red = lost)
4. Once lost, the tracker stays lost until you press R and select again

Usage:
    python main_demo.py --source clip.mp4
    python main_demo.py --source clip.mp4 --region 320,240,80,60,15

Controls:
    - R: Re-select the region (re-initializes the tracker)
    - P: Pause/resume
    - Q/ESC: Quit
"""

import sys
import time
import logging
import argparse
import math
from pathlib import Path
from typing import Optional

import cv2  # pyright: ignore[reportMissingImports]
import numpy as np  # pyright: ignore[reportMissingImports]

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from sparseflow import (
    FrameProcessor,
    FrameReader,
    PerformanceOverlay,
    RotatedRectangle,
    SfotConfig,
    SparseFlowObjectTracker,
    draw_tracked_region,
)


class SparseFlowDemo:
    """
    Interactive demo of the sparse-flow region tracker.
    """

    WINDOW_NAME = "SparseFlow Tracker Demo"

    def __init__(
            self,
            source: int | str = 0,
            config: Optional[SfotConfig] = None,
            region: Optional[RotatedRectangle] = None,
            output: Optional[str] = None,
            display: bool = True,
            loop: bool = False
    ):
        """
        Args:
            source: Camera index or video file path
            config: Tracker configuration
            region: Initial region; None = select interactively
            output: Path of an .avi file to record the annotated frames
            display: Show a window (requires a GUI backend)
            loop: Loop video files when they reach the end
        """
        self.source = source
        self.config = config or SfotConfig()
        self.initial_region = region
        self.output = output
        self.display = display

        self.reader = FrameReader(source, loop=loop)
        self.tracker = SparseFlowObjectTracker(self.config, tracker_id="demo")
        self.perf = PerformanceOverlay()
        self.writer: Optional[cv2.VideoWriter] = None

        self._paused = False
        self._frames = 0
        self._lost_at: Optional[int] = None

        self.logger = logging.getLogger("SparseFlowDemo")

    def _select_region(self, frame: np.ndarray) -> Optional[RotatedRectangle]:
        """Drag a box on the frame. Returns None if the selection is empty."""
        x, y, w, h = cv2.selectROI(self.WINDOW_NAME, frame, showCrosshair=True, fromCenter=False)
        if w <= 0 or h <= 0:
            return None
        return RotatedRectangle.from_bbox(x, y, w, h)

    def _open_writer(self, frame: np.ndarray):
        h, w = frame.shape[:2]
        fourcc = cv2.VideoWriter_fourcc(*"MJPG")
        self.writer = cv2.VideoWriter(self.output, fourcc, self.reader.fps or 30.0, (w, h))
        if not self.writer.isOpened():
            self.logger.error(f"Cannot open output video: {self.output}")
            self.writer = None

    def _start_tracking(self, frame: np.ndarray, region: Optional[RotatedRectangle]) -> bool:
        if region is None:
            if not self.display:
                self.logger.error("No --region given and no display to select one")
                return False
            region = self._select_region(frame)
            if region is None:
                self.logger.info("Empty selection")
                return False

        self.tracker.init(frame, region)
        self._lost_at = None
        self.logger.info(
            f"Tracking region center=({region.cx:.1f}, {region.cy:.1f}) "
            f"size={region.width:.1f}x{region.height:.1f} "
            f"angle={math.degrees(region.theta):.1f}deg"
        )
        return True

    def _render(self, frame: np.ndarray, latency_ms: float) -> np.ndarray:
        canvas = FrameProcessor.to_bgr(frame)
        draw_tracked_region(canvas, self.tracker.region, self.tracker.status)

        self.perf.update(latency_ms, self.tracker.last_result)
        return self.perf.draw(canvas, f"Frame {self._frames}")

    def _handle_key(self, key: int, frame: np.ndarray) -> bool:
        """Returns False to quit."""
        if key in (ord('q'), ord('Q'), 27):
            return False
        if key in (ord('p'), ord('P')):
            self._paused = not self._paused
            self.logger.info("Paused" if self._paused else "Resumed")
        elif key in (ord('r'), ord('R')):
            self._start_tracking(frame, None)
        return True

    def run(self) -> int:
        """Main loop. Returns a process exit code."""
        if not self.reader.open():
            return 1

        ok, frame = self.reader.read()
        if not ok:
            self.logger.error("Source produced no frames")
            self.reader.release()
            return 1

        if self.display:
            cv2.namedWindow(self.WINDOW_NAME, cv2.WINDOW_NORMAL)

        if not self._start_tracking(frame, self.initial_region):
            self.reader.release()
            return 1

        if self.output:
            self._open_writer(frame)

        try:
            while True:
                if not self._paused:
                    ok, next_frame = self.reader.read()
                    if not ok:
                        self.logger.info("End of stream")
                        break
                    frame = next_frame
                    self._frames += 1

                    start = time.perf_counter()
                    result = self.tracker.update(frame)
                    latency_ms = (time.perf_counter() - start) * 1000.0

                    if not result.success and self._lost_at is None:
                        self._lost_at = self._frames
                        self.logger.info(f"Lost at frame {self._frames}: {result.failure.value}")

                    canvas = self._render(frame, latency_ms)
                    if self.writer is not None:
                        self.writer.write(canvas)
                else:
                    canvas = self._render(frame, 0.0)

                if self.display:
                    cv2.imshow(self.WINDOW_NAME, canvas)
                    key = cv2.waitKey(1) & 0xFF
                    if not self._handle_key(key, frame):
                        break

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.reader.release()
            if self.writer is not None:
                self.writer.release()
            if self.display:
                cv2.destroyAllWindows()

        self.logger.info(
            f"Processed {self._frames} frames"
            + (f", lost at frame {self._lost_at}" if self._lost_at is not None else "")
        )
        return 0


def parse_region(text: str) -> RotatedRectangle:
    """'cx,cy,w,h' or 'cx,cy,w,h,angle_deg'."""
    parts = [float(p) for p in text.split(",")]
    if len(parts) not in (4, 5):
        raise argparse.ArgumentTypeError("Region must be cx,cy,w,h[,angle_deg]")
    angle = math.radians(parts[4]) if len(parts) == 5 else 0.0
    try:
        return RotatedRectangle(parts[0], parts[1], parts[2], parts[3], angle)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="SparseFlow rigid-region tracker demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls:
  R            Re-select the region (re-initializes the tracker)
  P            Pause/resume
  Q/ESC        Quit

Examples:
  python main_demo.py                                  # Webcam 0, drag a box
  python main_demo.py --source video.mp4               # Video file
  python main_demo.py --source video.mp4 --region 320,240,80,60,15
  python main_demo.py --source video.mp4 --region 320,240,80,60 --no-display --output out.avi
        """
    )

    parser.add_argument(
        "--source", "-s",
        default=0,
        help="Video source: camera index (0, 1, ...) or file path"
    )
    parser.add_argument(
        "--region",
        type=parse_region,
        default=None,
        help="Initial region as cx,cy,w,h[,angle_deg]"
    )
    parser.add_argument(
        "--samples",
        type=int,
        default=15,
        help="Grid resolution n (n x n sample points)"
    )
    parser.add_argument(
        "--fb-error",
        type=float,
        default=1.0,
        help="Forward-backward error threshold in pixels"
    )
    parser.add_argument(
        "--min-correspondences",
        type=int,
        default=None,
        help="Minimum surviving points per frame (default: same as --samples)"
    )
    parser.add_argument(
        "--max-error",
        type=float,
        default=6.0,
        help="Maximum median squared residual of the motion fit"
    )
    parser.add_argument(
        "--radius",
        type=int,
        default=5,
        help="KLT window radius"
    )
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Write annotated frames to this .avi file"
    )
    parser.add_argument(
        "--no-display",
        action="store_true",
        help="Run without a window (requires --region)"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Loop video files when they reach the end"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    source_arg = args.source
    if isinstance(source_arg, str) and source_arg.lower() == "camera":
        source = 0
    else:
        try:
            source = int(source_arg)
        except ValueError:
            source = source_arg

    try:
        config = SfotConfig(
            number_of_samples=args.samples,
            maximum_error_fb=args.fb_error,
            min_correspondences=(
                args.min_correspondences if args.min_correspondences is not None else args.samples
            ),
            robust_max_error=args.max_error,
            tracker_feature_radius=args.radius,
        )
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(1)

    print("\n" + "=" * 60)
    print("  SparseFlow Tracker Demo")
    print("=" * 60)
    print(f"  Source: {source}")
    print(f"  Grid: {config.number_of_samples}x{config.number_of_samples}")
    print(f"  FB error: {config.maximum_error_fb}px  Min points: {config.min_correspondences}")
    print("=" * 60 + "\n")

    demo = SparseFlowDemo(
        source=source,
        config=config,
        region=args.region,
        output=args.output,
        display=not args.no_display,
        loop=args.loop
    )
    sys.exit(demo.run())


if __name__ == "__main__":
    main()
