"""
HuggingFace Client - causal LM backend for slot extraction

Responsibilities:
- Load a causal LM, optionally 4-bit quantized on CUDA
- Wrap extraction prompts in the tokenizer's chat template
- Generate completions and JSON completions (with repair)
- Keep per-call diagnostics (token counts, latency) for logging

Design principles:
- Dependency injection (no singleton)
- Fail fast on load errors (missing CUDA, OOM)
- Model-agnostic (formatting comes from the tokenizer)
"""

import logging
import time
from typing import Any, Dict, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig

from survey_engine.utils.json_repair import repair_json

logger = logging.getLogger(__name__)

DEVICE_CUDA = "cuda"

# Prompts longer than this are truncated from the left (keeps the answer)
DEFAULT_MAX_INPUT_TOKENS = 3072


class HuggingFaceClient:
    """Causal LM wrapper used by LLMSlotExtractor"""

    def __init__(
        self,
        model_name: str,
        load_in_4bit: bool = True,
        device: str = DEVICE_CUDA,
        use_chat_template: bool = True,
        max_input_tokens: int = DEFAULT_MAX_INPUT_TOKENS
    ) -> None:
        """
        Load tokenizer and model.

        Args:
            model_name: HuggingFace model identifier
            load_in_4bit: NF4 quantization (CUDA only, needs bitsandbytes)
            device: "cuda" or "cpu"
            use_chat_template: Wrap prompts in the tokenizer's chat template
            max_input_tokens: Prompt token limit

        Raises:
            RuntimeError: If CUDA requested but not available
        """
        if device == DEVICE_CUDA and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        self.model_name = model_name
        self.device = device
        self.use_chat_template = use_chat_template
        self.max_input_tokens = max_input_tokens
        self.last_diagnostics: Optional[Dict[str, Any]] = None

        logger.info(f"Loading extraction model: {model_name} (device: {device}, 4-bit: {load_in_4bit})")

        self.tokenizer = self._load_tokenizer(model_name)
        self.model = self._load_model(model_name, load_in_4bit)
        self.model.eval()

        logger.info("Extraction model ready")

    # ========================
    # Loading
    # ========================

    @staticmethod
    def _load_tokenizer(model_name: str):
        tokenizer = AutoTokenizer.from_pretrained(model_name)
        tokenizer.truncation_side = "left"
        if tokenizer.pad_token is None:
            if tokenizer.eos_token is not None:
                tokenizer.pad_token = tokenizer.eos_token
            else:
                tokenizer.add_special_tokens({'pad_token': '[PAD]'})
                logger.warning("Tokenizer has no eos_token, added [PAD]")
        return tokenizer

    def _load_model(self, model_name: str, load_in_4bit: bool):
        on_cuda = self.device == DEVICE_CUDA
        quantization_config = None
        if load_in_4bit and on_cuda:
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_quant_type="nf4",
                bnb_4bit_compute_dtype=torch.bfloat16,
                bnb_4bit_use_double_quant=True
            )

        try:
            return AutoModelForCausalLM.from_pretrained(
                model_name,
                quantization_config=quantization_config,
                device_map="auto" if on_cuda else None,
                torch_dtype=torch.bfloat16 if on_cuda else torch.float32
            )
        except torch.cuda.OutOfMemoryError:
            logger.error(f"CUDA out of memory loading {model_name}")
            raise

    def is_loaded(self) -> bool:
        return self.model is not None and self.tokenizer is not None

    # ========================
    # Generation
    # ========================

    def _format(self, prompt: str) -> str:
        if self.use_chat_template and getattr(self.tokenizer, "chat_template", None):
            return self.tokenizer.apply_chat_template(
                [{"role": "user", "content": prompt}],
                tokenize=False,
                add_generation_prompt=True
            )
        return prompt

    def generate(self, prompt: str, max_tokens: int = 256, temperature: float = 0.3) -> str:
        """
        Generate a completion.

        Args:
            prompt: Plain-text prompt (chat formatting applied here)
            max_tokens: Maximum new tokens
            temperature: Sampling temperature (0.0 = greedy)

        Returns:
            str: Generated text only (prompt removed)

        Raises:
            RuntimeError: If model not loaded
            torch.cuda.OutOfMemoryError: If GPU runs out of memory
        """
        if not self.is_loaded():
            raise RuntimeError("Model not loaded")

        started = time.perf_counter()
        inputs = self.tokenizer(
            self._format(prompt),
            return_tensors="pt",
            truncation=True,
            max_length=self.max_input_tokens
        ).to(self.model.device)
        prompt_tokens = inputs.input_ids.shape[1]

        with torch.no_grad():
            outputs = self.model.generate(
                **inputs,
                max_new_tokens=max_tokens,
                do_sample=temperature > 0,
                temperature=temperature if temperature > 0 else None,
                pad_token_id=self.tokenizer.pad_token_id
            )

        generated = outputs[0][prompt_tokens:]
        text = self.tokenizer.decode(generated, skip_special_tokens=True)

        self.last_diagnostics = {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": int(generated.shape[0]),
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
        }
        logger.debug(f"Generation diagnostics: {self.last_diagnostics}")
        return text

    def generate_json(self, prompt: str, max_tokens: int = 256, temperature: float = 0.0) -> str:
        """
        Generate a completion expected to hold one JSON object.

        Returns:
            str: Repaired JSON text. Caller parses it.
        """
        return repair_json(self.generate(prompt, max_tokens=max_tokens, temperature=temperature))

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            "model_name": self.model_name,
            "device": self.device,
            "is_loaded": self.is_loaded(),
            "chat_template": bool(getattr(self.tokenizer, "chat_template", None)),
            "max_input_tokens": self.max_input_tokens,
        }
        if self.device == DEVICE_CUDA and torch.cuda.is_available():
            info["gpu_memory_allocated_gb"] = round(torch.cuda.memory_allocated() / 1e9, 2)
        return info
