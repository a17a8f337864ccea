import shlex, sys
from typing import List, Optional, TextIO

HELP = """Commands:
  stop                       stop the server and exit
  restart                    reload the config file and restart the server
  genkeypair [bits]          generate and save a new key pair (default 2048, 512-16384)
  showkey pub|priv           print a key as Base64
  testvote <user>            send a test vote for <user> to this server
  testquery <line> [line...] encrypt the lines (joined by newlines) and send them
  info                       show the server address and key size
  help                       show this text"""

ERRORS = {
    "BindFailure": "Could not bind the configured address, is the port in use?",
    "InvalidKeySize": "Key size must be between 512 and 16384.",
    "UnknownKeyKind": "Usage: showkey pub|priv",
    "PublicKeyFileNotFound": "Public key file not found.",
    "PrivateKeyFileNotFound": "Private key file not found.",
    "InvalidPublicKeyFile": "Public key file is not a valid RSA key.",
    "InvalidPrivateKeyFile": "Private key file is not a valid RSA key.",
    "InvalidConfig": "The configuration file is invalid.",
}


def describe(result) -> str:
    ''' Turn a failed Result into one line for the operator '''
    text = ERRORS.get(result.error, result.error)
    if result.exception is not None:
        text += f" ({result.exception})"
    return text


def handle(votifier, args: List[str], out: TextIO) -> bool:
    '''
    This function runs one console command.
    Input:
        - votifier: the Votifier to operate on
        - args: the tokenized command line
        - out: where to print
    Output: False when the console should exit
    '''
    cmd, rest = args[0], args[1:]
    if cmd == "stop" and not rest:
        if votifier.server.running:
            votifier.stop()
        return False
    elif cmd == "restart" and not rest:
        r = votifier.restart()
        if not r.ok:
            print(describe(r), file=out)
            return votifier.server.running
    elif cmd == "genkeypair" and len(rest) <= 1:
        try:
            bits = int(rest[0]) if rest else 2048
        except ValueError:
            print("Key size must be a number.", file=out)
            return True
        print("Generating key pair...", file=out)
        r = votifier.generate_and_save_keypair(bits)
        print(f"New public key: {r.value}" if r.ok else describe(r), file=out)
    elif cmd == "showkey" and len(rest) == 1:
        r = votifier.display_key(rest[0])
        print(r.value if r.ok else describe(r), file=out)
    elif cmd == "testvote" and len(rest) == 1:
        r = votifier.send_test_vote(rest[0])
        print("Test vote sent." if r.ok else describe(r), file=out)
    elif cmd == "testquery" and rest:
        r = votifier.send_test_query(rest)
        print("Test query sent." if r.ok else describe(r), file=out)
    elif cmd == "info" and not rest:
        config = votifier.config
        if config is not None and config.key_pair is not None:
            print(f"Listening on {config.host}:{config.port}, {config.key_pair.bits}-bit key, "
                  f"timeout {config.timeout}s, {votifier.server.state.accepted} connection(s) accepted", file=out)
    elif cmd == "help":
        print(HELP, file=out)
    else:
        print("Unknown command or wrong arguments, type 'help'.", file=out)
    return True


def run_console(votifier, inp: Optional[TextIO] = None, out: Optional[TextIO] = None) -> None:
    ''' Read commands until "stop", EOF or Ctrl-C; the server is stopped on the way out '''
    inp = inp or sys.stdin
    out = out or sys.stdout
    try:
        for line in inp:
            try:
                args = shlex.split(line)
            except ValueError as e:
                print(f"Could not parse command: {e}", file=out)
                continue
            if args and not handle(votifier, args, out):
                return
    except KeyboardInterrupt:
        print(file=out)   # Ctrl-C behaves like "stop"
    if votifier.server.running:
        votifier.stop()
