import argparse
import logging
import os
import signal
import sys

from .calibration import (
    Answer,
    CalibrationEngine,
    ConsoleConfirmation,
    ScriptedConfirmation,
    WindowConfirmation,
)
from .config import TrackerConfig, load_config
from .errors import TrackingError
from .logging_utils import add_file_handler, setup_logger
from .services.geometry import load_reference_grid, load_scene_extent, load_transformation
from .services.publisher import NullPublisher, ParameterTreePublisher, Publisher
from .source import parse_device_index, probe_devices, resolve, save_snapshot
from .st_types import Frame, SceneExtent
from .strategies.decode_qr import QrDecode
from .strategies.reproject import select_strategy
from .worker import TrackingWorker

BOUND = "# -----------------------------------"


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", help="Path to JSON/YAML config")
    common.add_argument("--log-level")
    common.add_argument("--log-file")

    ap = argparse.ArgumentParser(
        prog="scene-tracking",
        description="Checkerboard calibration and QR marker tracking on a planar scene",
    )
    sub = ap.add_subparsers(dest="command", required=True)

    cal = sub.add_parser("calibrate", parents=[common],
                         help="Compute the camera-to-scene transformation")
    cal.add_argument("grid", help="Chessboard reference YML")
    cal.add_argument("scene", help="Scene extent YML, or '-' for the default extent")
    cal.add_argument("source", help="Image file or first camera index")
    cal.add_argument("output", help="Transformation YML to write")
    cal.add_argument("--no-refine", action="store_true", help="Skip sub-pixel corner refinement")
    cal.add_argument("--confirm", choices=["window", "console"], default="window")
    cal.add_argument("--answers", nargs="+", metavar="Y|N",
                     help="Pre-recorded answers instead of asking, consumed in order "
                          "(a camera source asks about the snapshot first)")
    cal.add_argument("--snapshot", help="Where to save a frame captured from a camera")

    trk = sub.add_parser("track", parents=[common], help="Track markers continuously")
    trk.add_argument("transform", help="Transformation YML from 'calibrate'")
    trk.add_argument("scene", help="Scene extent YML")
    trk.add_argument("source", help="Video file or first camera index")
    trk.add_argument("--try-gpu", action="store_true", help="Use CUDA when available")
    trk.add_argument("--display", action="store_true", help="Show the found symbols")
    trk.add_argument("--max-frames", type=int)
    trk.add_argument("--publish", action="store_true",
                     help="Enable parameter tree publishing (or set env PUBLISH=1)")
    trk.add_argument("--broker-host")
    trk.add_argument("--broker-port", type=int)

    dec = sub.add_parser("decode", parents=[common], help="Decode markers in one image")
    dec.add_argument("transform")
    dec.add_argument("scene")
    dec.add_argument("image")
    dec.add_argument("--try-gpu", action="store_true")

    cap = sub.add_parser("capture", parents=[common], help="Save one frame from a camera")
    cap.add_argument("index", help="First camera index to try")
    cap.add_argument("image", help="Image file to write")

    return ap


def _load_cfg(args: argparse.Namespace) -> TrackerConfig:
    cfg = load_config(args.config) if args.config else TrackerConfig()
    cfg.apply_overrides(
        log_level=args.log_level.upper() if args.log_level else None,
        log_file=args.log_file,
        try_accelerator=True if getattr(args, "try_gpu", False) else None,
        display=True if getattr(args, "display", False) else None,
        refine_corners=False if getattr(args, "no_refine", False) else None,
        snapshot_path=getattr(args, "snapshot", None),
    )
    if getattr(args, "publish", False) or os.getenv("PUBLISH") == "1":
        cfg.publisher.enabled = True
    if getattr(args, "broker_host", None):
        cfg.publisher.host = args.broker_host
    if getattr(args, "broker_port", None):
        cfg.publisher.port = args.broker_port
    return cfg


def _resolve(cfg: TrackerConfig, descriptor: str):
    return resolve(
        descriptor,
        image_extensions=cfg.image_extensions,
        video_extensions=cfg.video_extensions,
        probe_count=cfg.probe_count,
    )


def build_publisher(cfg: TrackerConfig, logger: logging.Logger) -> Publisher:
    if not cfg.publisher.enabled:
        logger.info("Publishing DISABLED; poses are only logged.")
        return NullPublisher()
    pub = cfg.publisher
    return ParameterTreePublisher(
        host=pub.host,
        port=pub.port,
        root=pub.root,
        prefix=pub.prefix,
        client_id=pub.client_id,
        logger=logger,
    ).start()


def cmd_calibrate(args, cfg: TrackerConfig, logger: logging.Logger) -> int:
    logger.info("%s Camera calibration with chessboard %s", BOUND, BOUND)
    grid = load_reference_grid(args.grid)
    logger.info("Chessboard parameters successfully loaded from: %s", args.grid)
    if args.scene == "-":
        extent = SceneExtent(cfg.fallback_scene_width, cfg.fallback_scene_height)
    else:
        extent = load_scene_extent(args.scene)
        logger.info("Scene data successfully loaded from: %s", args.scene)

    if args.answers:
        confirm = ScriptedConfirmation(args.answers)
    elif args.confirm == "console":
        confirm = ConsoleConfirmation()
    else:
        confirm = WindowConfirmation(logger=logger)

    try:
        with _resolve(cfg, args.source) as source:
            frame = source.next_frame()
            if source.is_device:
                answer = confirm.confirm(f"Save captured frame to {cfg.snapshot_path}?", frame.image)
                if answer is Answer.ACCEPT:
                    save_snapshot(frame, cfg.snapshot_path)
                    logger.info("Calibration image successfully saved at: %s", cfg.snapshot_path)

        engine = CalibrationEngine(grid, confirm, extent,
                                   refine=cfg.refine_corners, logger=logger)
        engine.calibrate(frame.image, args.output)
    finally:
        confirm.close()
    return 0


def cmd_track(args, cfg: TrackerConfig, logger: logging.Logger) -> int:
    logger.info("%s QR tracker based on reprojection data %s", BOUND, BOUND)
    transform = load_transformation(args.transform)
    logger.info("Reprojection data successfully loaded from: %s", args.transform)
    extent = load_scene_extent(args.scene)
    logger.info("Scene data successfully loaded from: %s", args.scene)

    strategy = select_strategy(transform, extent, cfg.try_accelerator)
    publisher = build_publisher(cfg, logger)

    try:
        # opened last; the worker releases it when the session ends
        source = _resolve(cfg, args.source)
        worker = TrackingWorker(
            source,
            strategy,
            QrDecode(),
            publisher,
            logger=logger,
            display=cfg.display,
            max_frames=args.max_frames,
        )

        def _handle_signal(_sig, _frame):
            worker.stop()

        signal.signal(signal.SIGINT, _handle_signal)
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, _handle_signal)

        summary = worker.run()
    finally:
        publisher.close()
    print(summary)
    return 0


def cmd_decode(args, cfg: TrackerConfig, logger: logging.Logger) -> int:
    transform = load_transformation(args.transform)
    extent = load_scene_extent(args.scene)
    strategy = select_strategy(transform, extent, cfg.try_accelerator)
    worker = TrackingWorker(_resolve(cfg, args.image), strategy, QrDecode(), logger=logger)
    with worker.source as source:
        _gray, observations = worker.process_frame(source.next_frame())
    logger.info("%d symbol(s) found in the given image", len(observations))
    for obs in observations:
        print(f"{obs.identity}\t{obs.centroid[0]:.2f}\t{obs.centroid[1]:.2f}\t{obs.heading_deg:.2f}")
    return 0


def cmd_capture(args, cfg: TrackerConfig, logger: logging.Logger) -> int:
    first = parse_device_index(args.index)
    cap, index = probe_devices(first, cfg.probe_count)
    try:
        ok, img = cap.read()
    finally:
        cap.release()
    if not ok or img is None:
        logger.error("Camera %d returned no frame", index)
        return 1
    save_snapshot(Frame(1, "", img), args.image)
    logger.info("Calibration image successfully saved at: %s", args.image)
    return 0


COMMANDS = {
    "calibrate": cmd_calibrate,
    "track": cmd_track,
    "decode": cmd_decode,
    "capture": cmd_capture,
}


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    logger = setup_logger(args.command)
    try:
        cfg = _load_cfg(args)
        logging.getLogger("scene_tracking").setLevel(cfg.log_level)
        if cfg.log_file:
            add_file_handler(logging.getLogger("scene_tracking"), args.command, cfg.log_file)
        return COMMANDS[args.command](args, cfg, logger)
    except TrackingError as e:
        logger.error("%s", e)
        print(f"{args.command}: {e}", file=sys.stderr)
        return e.exit_code


if __name__ == "__main__":
    sys.exit(main())
