import os
from contextlib import contextmanager

if os.name == "nt":
    import msvcrt
else:
    import fcntl


# Holds an exclusive, whole-file advisory lock on an open file for the duration of the with-block. Blocks
# until the lock is granted. On Windows the first byte is locked, which every cooperating process does too,
# so it serves as the lock for the whole file.
@contextmanager
def locked(file):
    fd = file.fileno()
    if os.name == "nt":
        pos = file.tell()
        file.seek(0)
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
        file.seek(pos)
        try:
            yield file
        finally:
            file.flush()
            pos = file.tell()
            file.seek(0)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            file.seek(pos)
    else:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield file
        finally:
            file.flush()
            fcntl.flock(fd, fcntl.LOCK_UN)
