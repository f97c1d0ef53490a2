"""
Feed-forward threat classifier trained on-device.

A single hidden-layer ReLU network with a softmax head, written directly in
numpy so the training loop controls every gradient term (task, EWC,
distillation) explicitly.
"""

from __future__ import annotations

from typing import Dict, Optional

import numpy as np

Params = Dict[str, np.ndarray]

PARAM_NAMES = ("W1", "b1", "W2", "b2")


def softmax(logits: np.ndarray, temperature: float = 1.0) -> np.ndarray:
    z = logits / temperature
    z = z - z.max(axis=1, keepdims=True)
    e = np.exp(z)
    return e / e.sum(axis=1, keepdims=True)


def log_softmax(logits: np.ndarray, temperature: float = 1.0) -> np.ndarray:
    z = logits / temperature
    z = z - z.max(axis=1, keepdims=True)
    return z - np.log(np.exp(z).sum(axis=1, keepdims=True))


def one_hot(labels: np.ndarray, num_classes: int) -> np.ndarray:
    out = np.zeros((labels.shape[0], num_classes), dtype=np.float64)
    out[np.arange(labels.shape[0]), labels] = 1.0
    return out


class FeedForwardClassifier:
    """input -> ReLU(hidden) -> logits."""

    def __init__(
        self,
        input_dim: int,
        num_classes: int,
        hidden_units: int = 32,
        rng: Optional[np.random.Generator] = None,
    ):
        if input_dim <= 0 or num_classes < 2 or hidden_units <= 0:
            raise ValueError("input_dim, hidden_units must be positive and num_classes >= 2")
        self.input_dim = input_dim
        self.num_classes = num_classes
        self.hidden_units = hidden_units
        rng = rng or np.random.default_rng()
        # He initialisation for the ReLU layer
        self.params: Params = {
            "W1": rng.normal(0.0, np.sqrt(2.0 / input_dim), size=(input_dim, hidden_units)),
            "b1": np.zeros(hidden_units),
            "W2": rng.normal(0.0, np.sqrt(1.0 / hidden_units), size=(hidden_units, num_classes)),
            "b2": np.zeros(num_classes),
        }

    def forward(self, features: np.ndarray, params: Optional[Params] = None):
        """Return (logits, cache) where cache holds the activations needed by backprop."""
        p = params or self.params
        x = np.asarray(features, dtype=np.float64)
        pre = x @ p["W1"] + p["b1"]
        hidden = np.maximum(pre, 0.0)
        logits = hidden @ p["W2"] + p["b2"]
        return logits, {"x": x, "pre": pre, "hidden": hidden}

    def logits(self, features: np.ndarray) -> np.ndarray:
        return self.forward(features)[0]

    def predict_proba(self, features: np.ndarray) -> np.ndarray:
        return softmax(self.logits(features))

    def predict(self, features: np.ndarray) -> np.ndarray:
        return np.argmax(self.logits(features), axis=1)

    def accuracy(self, features: np.ndarray, labels: np.ndarray) -> float:
        if len(labels) == 0:
            return 0.0
        return float(np.mean(self.predict(features) == labels))

    def backward(self, cache: Dict[str, np.ndarray], dlogits: np.ndarray) -> Params:
        """Backpropagate a gradient on the logits to every parameter."""
        p = self.params
        grads = {
            "W2": cache["hidden"].T @ dlogits,
            "b2": dlogits.sum(axis=0),
        }
        dhidden = dlogits @ p["W2"].T
        dpre = dhidden * (cache["pre"] > 0)
        grads["W1"] = cache["x"].T @ dpre
        grads["b1"] = dpre.sum(axis=0)
        return grads

    def gradients(self, features: np.ndarray, labels: np.ndarray):
        """Mean cross-entropy loss and its parameter gradients."""
        n = max(features.shape[0], 1)
        logits, cache = self.forward(features)
        targets = one_hot(labels, self.num_classes)
        loss = float(-(targets * log_softmax(logits)).sum() / n)
        return loss, self.backward(cache, (softmax(logits) - targets) / n)

    def per_sample_squared_gradients(self, features: np.ndarray, labels: np.ndarray) -> Params:
        """
        Mean over samples of the squared per-sample log-likelihood gradient.

        This is the diagonal empirical Fisher. Squaring an outer product equals
        the outer product of the squares, so no per-sample tensors are built.
        """
        n = features.shape[0]
        if n == 0:
            return {k: np.zeros_like(v) for k, v in self.params.items()}
        logits, cache = self.forward(features)
        d = softmax(logits) - one_hot(labels, self.num_classes)
        dpre = (d @ self.params["W2"].T) * (cache["pre"] > 0)
        return {
            "W2": (cache["hidden"] ** 2).T @ (d ** 2) / n,
            "b2": (d ** 2).mean(axis=0),
            "W1": (cache["x"] ** 2).T @ (dpre ** 2) / n,
            "b1": (dpre ** 2).mean(axis=0),
        }

    def state_dict(self) -> Params:
        return {k: v.copy() for k, v in self.params.items()}

    def load_state_dict(self, state: Params) -> None:
        for name in PARAM_NAMES:
            if name not in state:
                raise KeyError(f"missing parameter '{name}'")
            if state[name].shape != self.params[name].shape:
                raise ValueError(f"shape mismatch for '{name}': {state[name].shape} vs {self.params[name].shape}")
        self.params = {k: np.array(state[k], dtype=np.float64, copy=True) for k in PARAM_NAMES}

    def copy(self) -> "FeedForwardClassifier":
        clone = FeedForwardClassifier.__new__(FeedForwardClassifier)
        clone.input_dim = self.input_dim
        clone.num_classes = self.num_classes
        clone.hidden_units = self.hidden_units
        clone.params = self.state_dict()
        return clone
