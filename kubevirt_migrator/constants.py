"""Centralized constants for resource names, paths and marker strings."""

# Environment variable prefix for every CLI flag
ENV_PREFIX = "KUBEVIRT_MIGRATOR_"

# Resource name suffixes, all prefixed with the VM name
SRC_REPLICATOR_SUFFIX = "-src-replicator"
DST_REPLICATOR_SUFFIX = "-dst-replicator"
DST_SERVICE_SUFFIX = "-dst-svc"
SSH_SECRET_SUFFIX = "-repl-ssh-keys"
CRONJOB_SUFFIX = "-repl-cronjob"
FINAL_JOB_SUFFIX = "-repl-final-job"
VIRT_LAUNCHER_PREFIX = "virt-launcher-"

# Paths inside replicator pods
SOURCE_IMAGE_DIR = "/data/simg"
DEST_MOUNT_DIR = "/data/dimg"
DISK_IMAGE_NAME = "disk.img"
SSH_DIR = "~/.ssh"
SSH_PRIVATE_KEY = "~/.ssh/id_rsa"
SSH_PUBLIC_KEY = "~/.ssh/id_rsa.pub"
SSH_ROOT_PRIVATE_KEY = "/root/.ssh/id_rsa"
SSH_ROOT_PUBLIC_KEY = "/root/.ssh/id_rsa.pub"
SSH_AUTHORIZED_KEYS = "~/.ssh/authorized_keys"

# Root disk locations inside virt-launcher pods
VMI_ROOTDISK_PATHS = (
    "/run/kubevirt-private/vmi-disks/rootdisk",
    "/run/kubevirt-private-vmi-disks/rootdisk",
)
DISK_NOT_FOUND = "Disk not found"

# Replicator service
SSH_SERVICE_PORT = 22

# Markers shared by the connectivity test and the check engine
TCP_FAILURE_MARKER = "TCP connectivity test failed"
WRITE_PERMISSION_FAILURE_MARKER = "Source directory write permission"
SSHFS_MISSING_MARKER = "SSHFS command not available"
TCP_SUCCESS_MARKER = "Connection successful"
SSHFS_NOT_FOUND_OUTPUT = "sshfs not found"
SSHFS_MOUNT_TYPE = "fuse.sshfs"

# SSH key lookup outputs
KEYS_EXIST = "EXISTS"
KEYS_MISSING = "NOT_EXISTS"

# Pod network annotation used to preserve VM IP/MAC
POD_NETWORKS_ANNOTATION = "k8s.ovn.org/pod-networks"
