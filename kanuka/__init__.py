"""
Kānuka shares encrypted secret files between collaborators in a git repository.

Each device has its own RSA keypair. The private half never leaves the machine it was created on;
the public half is committed to '.kanuka/public_keys/<uuid>.pub'. A single symmetric key encrypts
every tracked secret file, and a copy of that key wrapped for each device is committed to
'.kanuka/secrets/<uuid>.kanuka'.

Files are paired by a simple rule:

\b
    * '.env' is encrypted to '.env.kanuka'.
    * 'config/.env.production' is encrypted to 'config/.env.production.kanuka'.

Start a new project:

\b
    $ kanuka config init --email alice@example.com
    $ kanuka init

Join an existing project and ask someone with access to register you:

\b
    $ kanuka create
    $ git add .kanuka && git commit -m "Add my public key" && git push
    (alice) $ kanuka register --user bob@example.com

Encrypt and decrypt secrets:

\b
    $ kanuka encrypt
    $ kanuka decrypt

Remove someone's access and re-key everything:

\b
    $ kanuka revoke --user bob@example.com
"""

__author__ = 'Kānuka contributors'
__version__ = '1.0.0'
