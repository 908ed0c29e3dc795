"""Provider gateway: token management, image probing, generation, safety and upscaling."""
