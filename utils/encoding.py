"""Encoding detection utilities"""

from pathlib import Path
from typing import Union

import chardet

FALLBACK_ENCODINGS = ['utf-8', 'utf-8-sig', 'cp1252', 'latin-1']


def detect_encoding(source: Union[Path, bytes]) -> str:
    """
    Detect text encoding with fallback support

    Args:
        source: Path to a file, or raw bytes already in memory

    Returns:
        Detected encoding string
    """
    if isinstance(source, (bytes, bytearray)):
        raw_sample = bytes(source[:8192])
    else:
        with open(source, 'rb') as f:
            raw_sample = f.read(8192)

    # Check for BOM
    if raw_sample.startswith(b'\xef\xbb\xbf'):
        return 'utf-8-sig'

    # Plain UTF-8 is by far the common case for bank exports
    try:
        raw_sample.decode('utf-8')
        return 'utf-8'
    except UnicodeDecodeError:
        pass

    result = chardet.detect(raw_sample)
    if result['encoding'] and result['confidence'] > 0.7:
        return result['encoding']

    for encoding in FALLBACK_ENCODINGS:
        try:
            raw_sample.decode(encoding)
            return encoding
        except (UnicodeDecodeError, LookupError):
            continue

    # Final fallback
    return 'latin-1'
