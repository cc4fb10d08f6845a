from __future__ import annotations

FUSE_KERNEL_VERSION = 7
# 7.6 is the first minor with struct fuse_init_out.
FUSE_MIN_KERNEL_MINOR = 6
# BATCH_FORGET arrives with 7.16.
FUSE_MAX_KERNEL_MINOR = 15
# Newest minor still using the 24 byte fuse_init_out.
FUSE_COMPAT_22_MINOR = 22

FUSE_ROOT_ID = 1

LOOKUP = 1
FORGET = 2
GETATTR = 3
OPEN = 14
READ = 15
RELEASE = 18
FLUSH = 25
INIT = 26
DESTROY = 38
BATCH_FORGET = 42

FUSE_ATOMIC_O_TRUNC = 1 << 3
FUSE_BIG_WRITES = 1 << 5

MAX_WRITE = 256 * 1024
MAX_READ = 128 * 1024
MAX_HANDLES = 1024

DEFAULT_ATTR_TIMEOUT = 10
DEFAULT_ENTRY_TIMEOUT = 10
DEFAULT_MAX_BACKGROUND = 32
DEFAULT_CONGESTION_THRESHOLD = 32

FILE_MODE = 0o777
DIR_MODE = 0o777
