"""Logging for facelens. Importing this module configures the root logger once."""

import logging
import os

from contextlib import contextmanager

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def get_logger(name):
    return logging.getLogger(name)


@contextmanager
def suppress_fds():
    """Point FD 1 and 2 at /dev/null for the duration of the block.

    Used around `FaceAnalysis(...)` in `facelens.face.sources` and `YOLO(...)` in
    `facelens.objects.sources`; both print model banners from native code that
    `contextlib.redirect_stdout` cannot catch.
    """
    devnull = os.open(os.devnull, os.O_RDWR)
    saved = (os.dup(1), os.dup(2))
    try:
        os.dup2(devnull, 1)
        os.dup2(devnull, 2)
        yield
    finally:
        for fd, old in zip((1, 2), saved):
            os.dup2(old, fd)
            os.close(old)
        os.close(devnull)
