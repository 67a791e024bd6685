"""Boot-time unlock of encrypted ZFS pools via age-wrapped key files."""
