# awgupdater

Finds, downloads, checks and installs updates for a VPN client.

An update server publishes a signed list of installer files. The list is
signed with signify (Ed25519). Each line of the list holds a BLAKE2b-256
hash and a file name. `awgupdater` does the following:

1. fetches the signed list and checks its signature against the release
   public key;
2. picks the installer for the given architecture
   (`wireguard-<arch>-<version>.msi`) whose version is newer than the
   running one;
3. downloads it into a new, randomly named temporary file that only its
   owner can read and write, reading at most 100 MiB and reporting progress
   as it goes;
4. compares the download's BLAKE2b-256 hash with the signed hash;
5. optionally passes the file to a signature check that you supply;
6. starts the installer, which is `msiexec /qb!- /i <file>` by default.

## Modules

- `awgupdater.version`: the client version `NUMBER`. `arch(machine)` maps
  a machine type such as `x86_64`, `aarch64` or `i686` to a release
  architecture name (`amd64`, `arm64`, `arm` or `x86`). It uses the current
  machine when no type is given and raises `ValueError` for a type it does
  not know. `os_name()` describes the operating system, as for example
  `Windows Server Core 10.0.20348` on Windows, or as system and release
  elsewhere. `os_is_core()` tells whether Windows is a Server Core or Nano
  Server installation, and is always `False` elsewhere. `ProductType` lists
  the Windows product types. `user_agent()` returns the HTTP User-Agent
  string.
- `awgupdater.signify`: `read_file_list(data, public_key)` checks a signify
  message with embedded content. It returns a dict that maps each file name
  to its 32-byte hash. It raises `SignifyError`, a `ValueError`, on any
  malformed or unauthentic input. The module also holds the default
  update-server settings and file-name patterns.
- `awgupdater.versions`: `version_newer_than(candidate, ours)` compares
  dotted versions. Each part must be a decimal number from 0 to 65535, and
  missing parts count as zero. Bad parts raise `ValueError`.
  `find_candidate(candidates, arch, ours)` returns an `UpdateFound`
  (`name`, `hash`) for the first listed installer that is newer, or `None`.
- `awgupdater.httpclient`: a small HTTP(S) client. A `Session` carries the
  User-Agent. `Session.connect(server, port, https)` gives a `Connection`,
  and port 0 picks the scheme's default port. `Connection.get(path, refresh)`
  gives a `Response`. With `refresh` set, the request asks caches not to
  answer. The response offers `length()` for Content-Length, `read(size)`
  and iteration in chunks. All three classes are context managers, and
  closing a session also closes its connections and responses. Failures
  raise `HttpError`, an `OSError`.
- `awgupdater.msirunner`: `msi_temp_file(directory)` creates a `TempFile`.
  The file is made in the Windows `Temp` directory on Windows and in the
  system temporary directory elsewhere. A `TempFile` has `write(data)`,
  `exclusive_path()` and `delete()`. `exclusive_path()` closes the file and
  returns its path. `run_msi(msi, msiexec)` runs the installer and waits for
  it. A non-zero exit status raises `subprocess.CalledProcessError`.
- `awgupdater.downloader`: the `Updater`, which ties the steps above
  together and reports `DownloadProgress` records (`activity`,
  `bytes_downloaded`, `bytes_total`, `error`, `complete`). Failures are
  reported as `UpdateError`.

## Checking a signed file list

```python
from awgupdater.signify import SignifyError, read_file_list

try:
    hashes = read_file_list(signed_bytes, public_key=release_public_key)
except SignifyError as exc:
    print("rejected:", exc)
else:
    for name, digest in hashes.items():
        print(name, digest.hex())
```

## Comparing versions

```python
from awgupdater.versions import find_candidate, version_newer_than

version_newer_than("1.0.1", "1.0.0")   # True
version_newer_than("1.0", "1.0.0")     # False

update = find_candidate(hashes, arch="amd64", ours="1.0.0")
```

## Running an update

`check_for_update()` returns the newer release, or `None` when there is
none. `download_verify_and_execute()` starts the update in a background
thread. It returns a `queue.Queue` of `DownloadProgress` records. The last
record has `complete` or `error` set.

```python
from awgupdater.downloader import Updater

updater = Updater(
    host="updates.example.com",
    port=443,
    https=True,
    public_key=release_public_key,
    arch="amd64",
    version="1.0.0",
    user_agent="AmneziaWG/1.0.0 (example)",
    official=True,
    verify_signature=lambda path: True,
    installer=None,
    temp_dir=None,
)

if updater.check_for_update() is not None:
    progress = updater.download_verify_and_execute()
    while True:
        item = progress.get()
        if item.error:
            raise item.error
        if item.activity:
            print(item.activity)
        if item.bytes_total:
            print(f"{item.bytes_downloaded} of {item.bytes_total}")
        if item.complete:
            break
```

If `installer` is `None`, `run_msi` is used. Any other callable receives the
`TempFile` instead. The temporary file is deleted once the update has
finished or failed. Only one update runs at a time in a process. If a
second update is started while one is running, it reports the error
"An update is already in progress".

## What it does not do

- It does not check Authenticode or any other code signature itself.
  Pass a `verify_signature` callable to have the downloaded file checked.
  Without one, that step is skipped.
- It does not find out whether the running build is an official one.
  `official` is whatever you pass. When it is `False`, updating is refused
  with an `UpdateError`.
- It does not raise privileges or run the installer as another user. The
  installer runs with the rights of the calling process.
- It has no command-line program and no user interface. It is a library.