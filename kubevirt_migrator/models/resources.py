"""Resource models for replication workloads."""

from pydantic import BaseModel, Field


class ResourceProfile(BaseModel):
    """CPU and memory limits/requests for a replication job."""

    cpu_limit: str = Field(description="CPU limit, one decimal (e.g. '2.0')")
    cpu_request: str = Field(description="CPU request, 70% of the limit")
    memory_limit: str = Field(description="Memory limit in Gi (e.g. '4Gi')")
    memory_request: str = Field(description="Memory request in Gi, 70% of the limit rounded up")

    model_config = {"frozen": True}

    def as_template_variables(self) -> dict[str, str]:
        return {
            "CPU_LIMIT": self.cpu_limit,
            "CPU_REQUEST": self.cpu_request,
            "MEMORY_LIMIT": self.memory_limit,
            "MEMORY_REQUEST": self.memory_request,
        }
