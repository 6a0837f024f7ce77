# Models module
from clipora.models.project import Project, Script
from clipora.models.video import Video, VideoStatus
from clipora.models.clip import Clip, SfxItem

__all__ = ["Project", "Script", "Video", "VideoStatus", "Clip", "SfxItem"]
