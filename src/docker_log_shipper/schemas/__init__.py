from docker_log_shipper.schemas.container import ContainerDescriptor, ProcessTable, parse_image_reference

__all__ = ["ContainerDescriptor", "ProcessTable", "parse_image_reference"]
