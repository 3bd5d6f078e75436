"""Support code for end-to-end tests of the DNS daemons."""