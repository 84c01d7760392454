"""Extech power analyser on a serial line."""

from __future__ import annotations

import fcntl
import os
import re
import select
import stat
import struct
import sys
import termios
import threading
import time

from .meters import PowerMeter

_REVNUM = (0x0, 0x8, 0x4, 0xC, 0x2, 0xA, 0x6, 0xE, 0x1, 0x9, 0x5, 0xD, 0x3, 0xB, 0x7, 0xF)
_REVDEC = (0x0, 0x2, 0x1, 0x3)
_DIGIT_MAP = (0x2, 0x3C, 0x3C0, 0x3C00)
_DIGIT_SHIFT = (1, 2, 6, 10)

_LEADING_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+))")

_SAMPLE_PERIOD = 0.2
_READ_TIMEOUT = 0.5


def decode_extech_value(byte3, byte4):
    """Decode the two value bytes of a reading into a decimal string.

    The meter sends a bit-reversed BCD number with a sign bit and a decimal
    position; raises ValueError if a digit is out of range.
    """
    value = (byte4 << 8) + byte3
    decimal = _REVDEC[(value & 0xC000) >> 14]
    sign = "+" if value & 0x1 else "-"

    digits = ["1" if (value & _DIGIT_MAP[0]) >> _DIGIT_SHIFT[0] else "0"]
    for mask, shift in zip(_DIGIT_MAP[1:], _DIGIT_SHIFT[1:]):
        digit = _REVNUM[(value & mask) >> shift]
        if digit > 0xA:
            raise ValueError(f"invalid digit in reading 0x{value:04x}")
        digits.append(chr(ord("0") + digit))

    text = "".join(digits)
    point = len(text) - decimal
    return f"{sign}{text[:point]}.{text[point:]}0"


def _leading_float(text):
    match = _LEADING_FLOAT.match(text)
    return float(match.group(1)) if match else 0.0


def parse_packet(data):
    """Return the wattage carried in a raw packet; raises ValueError if malformed."""
    data = bytes(data)
    if len(data) < 5 or data[0] != 2 or data[4] != 3:
        raise ValueError("invalid packet")
    try:
        text = decode_extech_value(data[2], data[3])
    except ValueError as exc:
        raise ValueError("invalid packet, conversion failed") from exc
    return _leading_float(text)


def _open_device(device_name):
    try:
        info = os.stat(device_name)
    except OSError:
        return -1
    if not stat.S_ISCHR(info.st_mode):
        return -1
    if not os.access(device_name, os.R_OK | os.W_OK):
        return -1
    try:
        return os.open(device_name, os.O_RDWR | os.O_NONBLOCK | os.O_NOCTTY)
    except OSError:
        return -1


def _setup_serial_device(fd):
    try:
        attrs = termios.tcgetattr(fd)
        termios.tcflush(fd, termios.TCIFLUSH)
        cc = list(attrs[6])
        cc[termios.VMIN] = 2
        cc[termios.VTIME] = 0
        cflag = termios.B9600 | termios.CS8 | termios.CREAD | termios.CLOCAL
        termios.tcsetattr(
            fd,
            termios.TCSANOW,
            [termios.IGNPAR, 0, cflag, 0, termios.B9600, termios.B9600, cc],
        )
    except termios.error:
        return False

    # The meter only answers with DTR raised and RTS dropped.
    try:
        raw = fcntl.ioctl(fd, termios.TIOCMGET, struct.pack("i", 0))
        flags = struct.unpack("i", raw)[0]
        flags |= termios.TIOCM_DTR
        flags &= ~termios.TIOCM_RTS
        fcntl.ioctl(fd, termios.TIOCMSET, struct.pack("i", flags))
    except OSError:
        pass
    return True


def _extech_read(fd):
    if fd < 0:
        return 0.0
    try:
        ready, _, _ = select.select([fd], [], [], _READ_TIMEOUT)
    except (OSError, ValueError):
        return -1.0
    if not ready:
        return -1.0
    try:
        data = os.read(fd, 250)
    except OSError:
        return -1.0
    try:
        return parse_packet(data)
    except ValueError:
        return -1000.0


class ExtechPowerMeter(PowerMeter):
    """Mains power analyser polled over a serial device."""

    def __init__(self, device_name="/dev/ttyUSB0"):
        super().__init__()
        self.device_name = device_name
        self._rate = 0.0
        self._sum = 0.0
        self._samples = 0
        self._stop = threading.Event()
        self._thread = None
        self._fd = _open_device(device_name)
        if self._fd >= 0 and not _setup_serial_device(self._fd):
            os.close(self._fd)
            self._fd = -1

    def _trigger(self):
        os.write(self._fd, b" ")

    def _measure(self):
        try:
            self._trigger()
        except OSError as exc:
            print(f"Error: {exc.strerror or exc}")
        self._rate = _extech_read(self._fd)

    def sample(self):
        """Poll the meter until the measurement is ended, accumulating readings."""
        while not self._stop.is_set():
            time.sleep(_SAMPLE_PERIOD)
            try:
                self._trigger()
            except OSError:
                continue
            self._sum += _extech_read(self._fd)
            self._samples += 1

    def start_measurement(self):
        self._stop.clear()
        self._sum = 0.0
        self._samples = 0
        self._thread = threading.Thread(target=self.sample, daemon=True)
        try:
            self._thread.start()
        except RuntimeError:
            self._thread = None
            print("ERROR: extech measurement thread creation failed", file=sys.stderr)

    def end_measurement(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._samples:
            self._rate = self._sum / self._samples
        else:
            self._measure()

    def power(self):
        return self._rate

    def dev_capacity(self):
        return 0.0

    def close(self):
        """Release the serial device."""
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1