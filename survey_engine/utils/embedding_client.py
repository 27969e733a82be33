"""
HuggingFace Embedder - sentence embeddings for redundancy checks

Responsibilities:
- Load an encoder model (AutoModel) and tokenizer
- Mean-pool token states into one vector per text
- L2-normalise the result

Implements the embedding service interface: embed(text) -> np.ndarray
"""

import logging

import numpy as np
import torch
from transformers import AutoModel, AutoTokenizer

from survey_engine.exceptions import EmbeddingFailure
from survey_engine.utils.vector_math import l2_normalize

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class HuggingFaceEmbedder:
    """Mean-pooled transformer embeddings"""

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL, device: str = "cpu",
                 max_length: int = 256) -> None:
        """
        Args:
            model_name: HuggingFace encoder identifier
            device: "cpu" or "cuda"
            max_length: Token limit per text

        Raises:
            RuntimeError: If CUDA requested but not available
        """
        if device == "cuda" and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        self.model_name = model_name
        self.device = device
        self.max_length = max_length

        logger.info(f"Loading embedding model: {model_name} ({device})")
        self.tokenizer = AutoTokenizer.from_pretrained(model_name)
        self.model = AutoModel.from_pretrained(model_name).to(device)
        self.model.eval()

    def embed(self, text: str) -> np.ndarray:
        """
        Embed one text.

        Raises:
            EmbeddingFailure: If text is empty or the model fails
        """
        if not text or not text.strip():
            raise EmbeddingFailure("Cannot embed empty text")

        try:
            inputs = self.tokenizer(
                text,
                return_tensors="pt",
                truncation=True,
                max_length=self.max_length
            ).to(self.device)

            with torch.no_grad():
                outputs = self.model(**inputs)

            # Mean pooling over non-padding tokens
            mask = inputs["attention_mask"].unsqueeze(-1).float()
            summed = (outputs.last_hidden_state * mask).sum(dim=1)
            counts = mask.sum(dim=1).clamp(min=1e-9)
            pooled = (summed / counts)[0].cpu().numpy()
        except Exception as e:
            logger.error(f"Embedding failed: {e}")
            raise EmbeddingFailure(f"Embedding failed: {e}") from e

        return l2_normalize(pooled)
