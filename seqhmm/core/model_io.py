"""
seqhmm model I/O module

Handles loading and saving HMM models in two formats:
- .json: Human-readable, fully portable
- anything else: Binary stream written by HiddenMarkovModel.save()
  (observation distribution first, then the Markov model, as consecutive
  numpy arrays)

Both formats are picked by file extension on save and load.
"""

import json
import warnings
from typing import Any, Dict, Tuple

from seqhmm.core.exceptions import ConfigurationError
from seqhmm.core.hmm import FORMAT_VERSION, HiddenMarkovModel
from seqhmm.core.observations import observation_type


# =============================================================================
# Loading
# =============================================================================

def load_model(filepath: str, obs_type: str = 'multinomial') -> HiddenMarkovModel:
    """
    Load a model from file.

    Args:
        filepath: Path to model file (.json or binary)
        obs_type: Observation distribution stored in a binary file
            (JSON files record their own)

    Returns:
        HiddenMarkovModel instance
    """
    if filepath.endswith('.json'):
        model, _ = load_model_with_metadata(filepath)
        return model

    with open(filepath, 'rb') as f:
        try:
            return HiddenMarkovModel.load(f, observation_type(obs_type))
        except (ValueError, EOFError) as e:
            raise ConfigurationError(f"Could not read binary model {filepath}: {e}") from e


def load_model_with_metadata(filepath: str) -> Tuple[HiddenMarkovModel, Dict[str, Any]]:
    """
    Load a JSON model and any metadata saved alongside it.

    Returns:
        (model, metadata)
    """
    with open(filepath, 'r') as f:
        try:
            data = json.load(f)
        except ValueError as e:
            raise ConfigurationError(f"Could not parse JSON model {filepath}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"{filepath} does not hold a JSON object")
    if data.get('model_type') != 'seqhmm':
        raise ConfigurationError(
            f"{filepath} is not a seqhmm model (model_type={data.get('model_type')!r})"
        )
    version = data.get('version', FORMAT_VERSION)
    try:
        newer = _version_tuple(version) > _version_tuple(FORMAT_VERSION)
    except ValueError:
        raise ConfigurationError(
            f"{filepath} has an unreadable format version {version!r}"
        ) from None
    if newer:
        warnings.warn(
            f"{filepath} was written by model format {version}, newer than "
            f"the supported {FORMAT_VERSION}; loading anyway."
        )

    return HiddenMarkovModel.from_dict(data), data.get('metadata', {})


def _version_tuple(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in str(version).split('.'))


# =============================================================================
# Saving
# =============================================================================

def save_model(model: HiddenMarkovModel, filepath: str, **metadata) -> None:
    """
    Save model to file.

    JSON when the path ends in .json (keyword arguments are stored under
    "metadata"), the binary stream format otherwise.
    """
    if filepath.endswith('.json'):
        _save_json(model, filepath, metadata)
        return

    if metadata:
        warnings.warn(
            f"Binary model files cannot hold metadata; dropping {sorted(metadata)}."
        )
    with open(filepath, 'wb') as f:
        model.save(f)


def _save_json(model: HiddenMarkovModel, filepath: str, metadata: Dict[str, Any]) -> None:
    """Save model in JSON format (human-readable, portable)."""
    data = model.to_dict()
    data['metadata'] = metadata
    with open(filepath, 'w') as f:
        json.dump(data, f, indent=2)
