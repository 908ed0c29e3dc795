from shotpix.gateway.upscale.poller import JobStatus, UpscaleJob, UpscaleJobPoller

__all__ = ["JobStatus", "UpscaleJob", "UpscaleJobPoller"]
