def to_hex(data, sep=' '):
    return sep.join('{:02x}'.format(b) for b in data)
