"""
Iterative building of ensemble models: structure generation, external
evaluation and retraining over several generations.

"""

from .state import (BuilderState, TrainerOptions, load_builder_config,
                    dump_builder_config)
from .repository import EnsembleArtifact, GenerationRepository
from .backends import get_backend, register_backend, EvaluatorBackend
from .builder import Builder, Phase
