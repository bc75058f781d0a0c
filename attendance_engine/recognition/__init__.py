from .loop import EventHandler, LoopState, RecognitionEvent, RecognitionLoop

__all__ = ["EventHandler", "LoopState", "RecognitionEvent", "RecognitionLoop"]
