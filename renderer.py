# ==============================================================================
# COMPOSITION RENDERER
# ==============================================================================
# Renders a composition into a single stereo WAV file. Each note plays the
# voicebank sample of its phoneme, pitch-shifted from the C4 recording by
# changing the playback rate, starting at the note's beat position. All
# samples are summed into one buffer whose length is fixed by the last
# measure; anything running past the end is cut off.
# ------------------------------------------------------------------------------

# --- Imports ---
import io
import logging
import re
import wave
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

OUTPUT_SAMPLE_RATE = 44100
OUTPUT_CHANNELS = 2
# Voicebank samples are recorded at middle C.
REFERENCE_PITCH = "C4"

NOTE_OFFSETS = {
    "C": 0, "C#": 1, "D": 2, "D#": 3, "E": 4, "F": 5,
    "F#": 6, "G": 7, "G#": 8, "A": 9, "A#": 10, "B": 11,
}
_NOTE_RE = re.compile(r"^([A-G]#?)(\d)$")

# Romanized phoneme -> sample file name inside a voicebank archive.
PHONEME_MAP: Dict[str, str] = {
    "a": "_あ.wav", "i": "_い.wav", "u": "_う.wav", "e": "_え.wav", "o": "_お.wav",
    "ka": "_か.wav", "ki": "_き.wav", "ku": "_く.wav", "ke": "_け.wav", "ko": "_こ.wav",
    "sa": "_さ.wav", "shi": "_し.wav", "su": "_す.wav", "se": "_せ.wav", "so": "_そ.wav",
    "ta": "_た.wav", "chi": "_ち.wav", "tsu": "_つ.wav", "te": "_て.wav", "to": "_と.wav",
    "na": "_な.wav", "ni": "_に.wav", "nu": "_ぬ.wav", "ne": "_ね.wav", "no": "_の.wav",
    "ha": "_は.wav", "hi": "_ひ.wav", "fu": "_ふ.wav", "he": "_へ.wav", "ho": "_ほ.wav",
    "ma": "_ま.wav", "mi": "_み.wav", "mu": "_む.wav", "me": "_め.wav", "mo": "_も.wav",
    "ya": "_や.wav", "yu": "_ゆ.wav", "yo": "_よ.wav",
    "ra": "_ら.wav", "ri": "_り.wav", "ru": "_る.wav", "re": "_れ.wav", "ro": "_ろ.wav",
    "wa": "_わ.wav", "wo": "_を.wav", "n": "_ん.wav",
}


@dataclass
class Note:
    pitch: str
    phoneme: str
    start_time: float  # in beats
    measure: int
    duration: float = 1.0


def note_to_midi(name: str) -> int:
    """MIDI number of a note name such as "C4" or "D#5"; unparseable names give middle C (60)."""
    match = _NOTE_RE.match(name or "")
    if not match:
        return 60
    note, octave = match.groups()
    return (int(octave) + 1) * 12 + NOTE_OFFSETS[note]


def playback_rate(from_note: str, to_note: str) -> float:
    return 2 ** ((note_to_midi(to_note) - note_to_midi(from_note)) / 12)


def total_duration(notes: Iterable[Note], bpm: float) -> float:
    """Length of the composition in seconds: up to the end of the last measure used."""
    measures = [n.measure + 1 for n in notes]
    if not measures:
        return 0.0
    return max(measures) / (bpm / 60)


def decode_wav(data: bytes) -> Tuple[np.ndarray, int]:
    """Read PCM WAV bytes into a float array of shape (frames, channels) in [-1, 1]."""
    with wave.open(io.BytesIO(data), "rb") as wf:
        channels = wf.getnchannels()
        width = wf.getsampwidth()
        rate = wf.getframerate()
        frames = wf.readframes(wf.getnframes())

    if width == 1:
        audio = (np.frombuffer(frames, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif width == 2:
        audio = np.frombuffer(frames, dtype="<i2").astype(np.float32) / 32768.0
    elif width == 4:
        audio = np.frombuffer(frames, dtype="<i4").astype(np.float32) / 2147483648.0
    else:
        raise ValueError(f"Unsupported sample width: {width * 8} bits")
    return audio.reshape(-1, channels), rate


def _to_stereo(audio: np.ndarray) -> np.ndarray:
    if audio.shape[1] == 1:
        return np.repeat(audio, OUTPUT_CHANNELS, axis=1)
    return audio[:, :OUTPUT_CHANNELS]


def resample(audio: np.ndarray, step: float) -> np.ndarray:
    """Read `audio` every `step` source frames with linear interpolation."""
    if len(audio) == 0 or step <= 0:
        return audio[:0]
    length = int(len(audio) / step)
    positions = np.arange(length) * step
    source = np.arange(len(audio))
    return np.stack([np.interp(positions, source, audio[:, c]) for c in range(audio.shape[1])], axis=1)


def encode_wav(buffer: np.ndarray, sample_rate: int = OUTPUT_SAMPLE_RATE) -> bytes:
    clipped = np.clip(buffer, -1.0, 1.0)
    pcm = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF).astype("<i2")
    out = io.BytesIO()
    with wave.open(out, "wb") as wf:
        wf.setnchannels(buffer.shape[1])
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.tobytes())
    return out.getvalue()


def render_composition(
    notes: List[Note],
    bpm: float,
    load_sample: Callable[[str], bytes],
    phoneme_map: Optional[Dict[str, str]] = None,
    sample_rate: int = OUTPUT_SAMPLE_RATE,
) -> bytes:
    """
    Mix `notes` into a WAV file.

    Args:
        notes: the notes to play; `start_time` is expressed in beats.
        bpm: tempo used to turn beats into seconds.
        load_sample: returns the WAV bytes of a sample file name.
        phoneme_map: phoneme -> sample file name; phonemes without an entry are skipped.
        sample_rate: output sample rate.
    """
    if bpm <= 0:
        raise ValueError("bpm must be positive")
    phoneme_map = PHONEME_MAP if phoneme_map is None else phoneme_map
    beats_per_second = bpm / 60
    length = int(np.ceil(total_duration(notes, bpm) * sample_rate))
    mix = np.zeros((length, OUTPUT_CHANNELS), dtype=np.float64)

    samples: Dict[str, Tuple[np.ndarray, int]] = {}
    for phoneme in dict.fromkeys(n.phoneme for n in notes):
        filename = phoneme_map.get(phoneme)
        if filename:
            audio, rate = decode_wav(load_sample(filename))
            samples[phoneme] = (_to_stereo(audio), rate)

    for note in notes:
        sample = samples.get(note.phoneme)
        if sample is None:
            continue
        audio, rate = sample
        step = playback_rate(REFERENCE_PITCH, note.pitch) * rate / sample_rate
        voiced = resample(audio, step)
        start = int(round(note.start_time / beats_per_second * sample_rate))
        if start >= length or start < 0:
            continue
        end = min(length, start + len(voiced))
        mix[start:end] += voiced[: end - start]

    logger.info(f"Rendered {len(notes)} notes into {length / sample_rate:.2f}s of audio")
    return encode_wav(mix, sample_rate)
