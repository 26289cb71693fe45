from refresh_engine.universe.directory import (
    InstrumentDirectory,
    StaticInstrumentDirectory,
    load_directory,
)

__all__ = ["InstrumentDirectory", "StaticInstrumentDirectory", "load_directory"]
