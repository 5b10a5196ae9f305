"""Loop devices, scratch mounts and guaranteed cleanup for disk images."""
