"""
Configuration management for the video screener.

Centralizes all configuration loading from environment variables
and provides type-safe access to configuration values.
"""

import os
from typing import Dict, Any, Tuple
from dataclasses import dataclass, field


@dataclass
class WorkerConfig:
    """Configuration for the screening worker"""
    
    # Document store settings
    STORE_TYPE: str = "memory"  # memory, postgres
    STORE_CONFIG: Dict[str, Any] = field(default_factory=dict)
    
    # Frame sampling
    DATA_DIR: str = "/app/data"
    FRAMES_PER_VIDEO: int = 5
    FRAME_SIZE: str = "640x480"
    PROBE_TIMEOUT_S: float = 30.0
    EXTRACT_TIMEOUT_S: float = 60.0
    
    # Classifier
    HUGGINGFACE_API_KEY: str = ""
    CLASSIFIER_BASE_URL: str = "https://router.huggingface.co/hf-inference/models"
    CLASSIFIER_MODEL: str = "Falconsai/nsfw_image_detection"
    CLASSIFIER_TIMEOUT_S: float = 30.0
    CLASSIFIER_DELAY_MS: int = 500
    CLASSIFIER_VOCABULARY: str = "v1"
    MOCK_STEP_DELAY_MS: int = 500
    
    # Decision policy
    FRAME_FLAG_THRESHOLD: float = 0.6
    AVERAGE_FLAG_THRESHOLD: float = 0.5
    
    # Dispatch
    MAX_CONCURRENT_JOBS: int = 2
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    # HTTP server
    ENABLE_HTTP_SERVER: bool = True
    HTTP_PORT: int = 8000
    
    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()
        
        # Store configuration
        config.STORE_TYPE = os.getenv("STORE_TYPE", "memory")
        config.STORE_CONFIG = cls._parse_store_config()
        
        # Frame sampling
        config.DATA_DIR = os.getenv("DATA_DIR", "/app/data")
        config.FRAMES_PER_VIDEO = int(os.getenv("FRAMES_PER_VIDEO", "5"))
        config.FRAME_SIZE = os.getenv("FRAME_SIZE", "640x480")
        config.PROBE_TIMEOUT_S = float(os.getenv("PROBE_TIMEOUT_S", "30"))
        config.EXTRACT_TIMEOUT_S = float(os.getenv("EXTRACT_TIMEOUT_S", "60"))
        
        # Classifier
        config.HUGGINGFACE_API_KEY = os.getenv("HUGGINGFACE_API_KEY", "")
        config.CLASSIFIER_BASE_URL = os.getenv(
            "CLASSIFIER_BASE_URL", "https://router.huggingface.co/hf-inference/models"
        )
        config.CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "Falconsai/nsfw_image_detection")
        config.CLASSIFIER_TIMEOUT_S = float(os.getenv("CLASSIFIER_TIMEOUT_S", "30"))
        config.CLASSIFIER_DELAY_MS = int(os.getenv("CLASSIFIER_DELAY_MS", "500"))
        config.CLASSIFIER_VOCABULARY = os.getenv("CLASSIFIER_VOCABULARY", "v1")
        config.MOCK_STEP_DELAY_MS = int(os.getenv("MOCK_STEP_DELAY_MS", "500"))
        
        # Decision policy
        config.FRAME_FLAG_THRESHOLD = float(os.getenv("FRAME_FLAG_THRESHOLD", "0.6"))
        config.AVERAGE_FLAG_THRESHOLD = float(os.getenv("AVERAGE_FLAG_THRESHOLD", "0.5"))
        
        # Dispatch
        config.MAX_CONCURRENT_JOBS = int(os.getenv("MAX_CONCURRENT_JOBS", "2"))
        
        # Logging
        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        
        # HTTP server
        config.ENABLE_HTTP_SERVER = os.getenv("WORKER_HTTP", "true").lower() == "true"
        config.HTTP_PORT = int(os.getenv("WORKER_HTTP_PORT", "8000"))
        
        return config
    
    @classmethod
    def _parse_store_config(cls) -> Dict[str, Any]:
        """Parse document store specific configuration"""
        store_type = os.getenv("STORE_TYPE", "memory")
        
        if store_type == "postgres":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
                "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10"))
            }
        else:
            return {}
    
    @property
    def frame_dimensions(self) -> Tuple[int, int]:
        """Parse FRAME_SIZE ("WIDTHxHEIGHT") into integers"""
        width, _, height = self.FRAME_SIZE.lower().partition("x")
        return int(width), int(height)
    
    def validate(self) -> None:
        """Validate configuration and raise errors for missing or invalid values"""
        required_vars = []
        
        if self.STORE_TYPE not in ("memory", "postgres"):
            raise ValueError(f"Unsupported store type: {self.STORE_TYPE}")
        
        if self.STORE_TYPE == "postgres" and not self.STORE_CONFIG.get("database_url"):
            required_vars.append("DATABASE_URL")
        
        if required_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(required_vars)}")
        
        if self.FRAMES_PER_VIDEO < 1:
            raise ValueError("FRAMES_PER_VIDEO must be at least 1")
        
        if self.MAX_CONCURRENT_JOBS < 1:
            raise ValueError("MAX_CONCURRENT_JOBS must be at least 1")
        
        try:
            width, height = self.frame_dimensions
        except ValueError:
            raise ValueError(f"FRAME_SIZE must look like 640x480, got {self.FRAME_SIZE!r}")
        if width <= 0 or height <= 0:
            raise ValueError(f"FRAME_SIZE must be positive, got {self.FRAME_SIZE!r}")
