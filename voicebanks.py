import logging
import os
import posixpath
import zipfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from dotenv import load_dotenv
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from db import get_db
from errors import ApiError
from models import Voicebank
from renderer import Note, render_composition

load_dotenv()

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOADS_DIR = os.getenv("UPLOADS_DIR", os.path.join(os.getcwd(), "uploads"))

MIME_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}


def mime_type_for(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return MIME_TYPES.get(ext, "application/octet-stream")


@dataclass
class ArchiveEntry:
    name: str
    path: str
    size: int


class VoicebankStore:
    """Looks voicebanks up by name and reads entries out of their zip archive."""

    def __init__(self, db: Session, uploads_dir: str):
        self.db = db
        self.uploads_dir = os.path.abspath(uploads_dir)

    def archive_path(self, voicebank_name: str) -> str:
        voicebank = self.db.query(Voicebank).filter_by(name=voicebank_name).first()
        if voicebank is None:
            raise ApiError(404, f'Voicebank "{voicebank_name}" not found')
        if not voicebank.filename_disk:
            raise ApiError(404, "No sample files found for this voicebank")
        path = os.path.abspath(os.path.join(self.uploads_dir, voicebank.filename_disk))
        if os.path.commonpath([path, self.uploads_dir]) != self.uploads_dir:
            raise ApiError(404, "ZIP file not found")
        return path

    def list_wav_files(self, voicebank_name: str) -> List[ArchiveEntry]:
        with zipfile.ZipFile(self.archive_path(voicebank_name)) as archive:
            return [
                ArchiveEntry(name=posixpath.basename(info.filename), path=info.filename, size=info.file_size)
                for info in archive.infolist()
                if not info.is_dir() and info.filename.lower().endswith(".wav")
            ]

    def read_file(self, voicebank_name: str, file_name: str) -> Tuple[ArchiveEntry, bytes]:
        """Return the first entry whose base name matches `file_name`, ignoring case."""
        wanted = file_name.lower()
        with zipfile.ZipFile(self.archive_path(voicebank_name)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                name = posixpath.basename(info.filename)
                if name.lower() == wanted:
                    entry = ArchiveEntry(name=name, path=info.filename, size=info.file_size)
                    return entry, archive.read(info)
        raise ApiError(404, f'File "{file_name}" not found in voicebank')


def get_voicebank_store(db: Session = Depends(get_db)) -> VoicebankStore:
    return VoicebankStore(db=db, uploads_dir=UPLOADS_DIR)


class RenderNote(BaseModel):
    pitch: str
    phoneme: str
    startTime: float = Field(ge=0)
    measure: int = Field(ge=0)
    duration: float = 1.0


class RenderRequest(BaseModel):
    bpm: float = Field(gt=0)
    notes: List[RenderNote]
    phoneme_map: Optional[Dict[str, str]] = None


@router.get("/", summary="Voicebank API health")
def voicebank_api_root():
    return {"message": "Voicebank API is working!"}


@router.get("/{voicebank_name}", summary="List the WAV samples of a voicebank")
def list_voicebank_files(voicebank_name: str, store: VoicebankStore = Depends(get_voicebank_store)):
    try:
        files = store.list_wav_files(voicebank_name)
        return {
            "voicebank": voicebank_name,
            "totalFiles": len(files),
            "files": [{"name": f.name, "path": f.path, "size": f.size} for f in files],
        }
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error extracting voicebank files for {voicebank_name}: {e}")
        raise ApiError(500, "Failed to extract voicebank files", str(e))


@router.get("/{voicebank_name}/{file_name}", summary="Stream one sample out of a voicebank archive")
def get_voicebank_file(voicebank_name: str, file_name: str, store: VoicebankStore = Depends(get_voicebank_store)):
    try:
        entry, data = store.read_file(voicebank_name, file_name)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error extracting {file_name} from voicebank {voicebank_name}: {e}")
        raise ApiError(500, "Failed to extract audio file", str(e))

    return Response(
        content=data,
        media_type=mime_type_for(entry.name),
        headers={
            "Content-Disposition": f"inline; filename*=UTF-8''{quote(entry.name, safe='')}",
            "Cache-Control": "public, max-age=31536000",
        },
    )


@router.post("/{voicebank_name}/render", summary="Render a composition to WAV with a voicebank")
def render_with_voicebank(
    voicebank_name: str,
    request: RenderRequest,
    store: VoicebankStore = Depends(get_voicebank_store),
):
    notes = [
        Note(pitch=n.pitch, phoneme=n.phoneme, start_time=n.startTime, measure=n.measure, duration=n.duration)
        for n in request.notes
    ]
    try:
        wav = render_composition(
            notes,
            request.bpm,
            load_sample=lambda filename: store.read_file(voicebank_name, filename)[1],
            phoneme_map=request.phoneme_map,
        )
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Error rendering composition with voicebank {voicebank_name}: {e}")
        raise ApiError(500, "Failed to render composition", str(e))

    return Response(
        content=wav,
        media_type="audio/wav",
        headers={"Content-Disposition": 'inline; filename="composition.wav"'},
    )
